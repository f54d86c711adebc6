import threading

import pytest

from mercado.pos import PeriodicSync


def _live_sync_threads(name):
    return [t for t in threading.enumerate() if t.name == name and t.is_alive()]


def test_callback_fires_on_interval():
    fired = threading.Event()
    sync = PeriodicSync(fired.set, name="test-fire")
    sync.start(0.01)
    try:
        assert fired.wait(2)
    finally:
        sync.stop()
    assert not sync.running


def test_restart_replaces_previous_thread():
    sync = PeriodicSync(lambda: None, name="test-restart")
    try:
        sync.start(60)
        sync.start(60)
        sync.start(30)
        assert sync.running
        assert len(_live_sync_threads("test-restart")) == 1
    finally:
        sync.stop()
    assert _live_sync_threads("test-restart") == []


def test_failing_tick_keeps_running():
    calls = []
    second = threading.Event()

    def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        second.set()

    sync = PeriodicSync(tick, name="test-fail")
    sync.start(0.01)
    try:
        assert second.wait(2)
    finally:
        sync.stop()


def test_stop_when_not_started():
    sync = PeriodicSync(lambda: None)
    sync.stop()
    assert not sync.running


@pytest.mark.parametrize("interval", [0, -1])
def test_invalid_interval(interval):
    with pytest.raises(ValueError):
        PeriodicSync(lambda: None).start(interval)
