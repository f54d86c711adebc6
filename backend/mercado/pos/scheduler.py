from __future__ import annotations

import logging
import threading


logger = logging.getLogger(__name__)


class PeriodicSync:
    """
    Runs `callback` every `interval` seconds on one daemon thread.

    start() while already running stops and joins the previous thread first,
    so restarting never leaves two timers firing.
    """

    def __init__(self, callback, name: str = "pos-sync"):
        self.callback = callback
        self.name = name
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        with self._lock:
            self._stop_locked()
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(interval, stop_event),
                name=self.name,
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None
        self._stop_event = None

    def _run(self, interval: float, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval):
            try:
                self.callback()
            except Exception:
                # Keep ticking; the next interval retries
                logger.exception("Periodic sync tick failed")
