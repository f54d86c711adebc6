"""
HttpRemoteStore against a mocked transport.
"""
import json

import httpx
import pytest

from mercado.pos import HttpRemoteStore, RemoteStoreError


def _store(handler):
    client = httpx.Client(base_url="http://store.test", transport=httpx.MockTransport(handler))
    return HttpRemoteStore("http://store.test", client=client)


def test_fetch_products():
    def handler(request):
        assert request.method == "GET"
        assert request.url.path == "/api/products"
        return httpx.Response(200, json={"items": [{"id": 1, "sku": "A"}], "total": 1})

    assert _store(handler).fetch_products() == [{"id": 1, "sku": "A"}]


def test_create_orders_batch_posts_wrapped_payloads():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"created": 1, "skipped": [], "order_ids": [7]})

    result = _store(handler).create_orders_batch([{"sale_uid": "abc"}])

    assert seen["path"] == "/api/orders/batch"
    assert seen["body"] == {"orders": [{"sale_uid": "abc"}]}
    assert result["order_ids"] == [7]


def test_error_status_raises_with_details():
    def handler(request):
        return httpx.Response(400, json={"error": "total mismatch", "details": {"field": "total_cents"}})

    with pytest.raises(RemoteStoreError) as exc:
        _store(handler).create_orders_batch([{"sale_uid": "abc"}])

    assert exc.value.status_code == 400
    assert str(exc.value) == "total mismatch"
    assert exc.value.details == {"field": "total_cents"}


def test_non_json_error_body():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(RemoteStoreError) as exc:
        _store(handler).fetch_products()
    assert exc.value.status_code == 502


def test_network_failure_raises_remote_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteStoreError):
        _store(handler).fetch_products()
