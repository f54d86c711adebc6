"""
HTTP surface tests through the Flask test client.
"""
from mercado.models.orders import CHANNEL_POS
from mercado.pos.sync_queue import build_pos_sale
from mercado.services.cart_service import Cart
from mercado.services.catalog_service import product_snapshot


def _checkout_payload(policy, address, *lines):
    cart = Cart(policy=policy)
    for product, qty in lines:
        cart.add_item(product_snapshot(product), qty)
    payload = cart.snapshot()
    payload.update({"user_id": address.user_id, "address_id": address.id})
    return payload


def _place(client, policy, address, *lines):
    response = client.post("/api/orders", json=_checkout_payload(policy, address, *lines))
    assert response.status_code == 201
    return response.get_json()["order"]


# =============================================================================
# SYSTEM / CATALOG
# =============================================================================

def test_health(client, db_session):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["details"] == {"products": 0, "orders": 0}


def test_products_listing(client, milk, water):
    body = client.get("/api/products").get_json()
    assert body["total"] == 2
    by_sku = {p["sku"]: p for p in body["items"]}
    assert by_sku[milk.sku]["cost_cents"] == 700
    assert by_sku[milk.sku]["bundle_offers"] == [
        {"quantity": 3, "price_cents": 2000},
        {"quantity": 6, "price_cents": 3500},
    ]

    paged = client.get("/api/products?page=1&limit=1").get_json()
    assert paged["total"] == 2
    assert len(paged["items"]) == 1

    assert client.get("/api/products?page=0").status_code == 400


def test_product_detail_and_categories(client, milk):
    assert client.get(f"/api/products/{milk.id}").get_json()["product"]["name"] == "Leche entera 1L"
    assert client.get("/api/products/999").status_code == 404
    categories = client.get("/api/categories").get_json()["items"]
    assert [c["slug"] for c in categories] == ["lacteos"]


# =============================================================================
# ORDERS
# =============================================================================

def test_create_order(client, milk, address, policy):
    order = _place(client, policy, address, (milk, 7))
    assert order["status"] == "Recibido"
    assert order["subtotal_cents"] == 4500
    assert order["total_cents"] == 4500 + 1000 + 90

    listed = client.get("/api/orders?user_id=u-1").get_json()
    assert listed["total"] == 1
    assert client.get(f"/api/orders/{order['id']}").get_json()["order"]["id"] == order["id"]


def test_create_order_rejects_tampered_total(client, milk, address, policy):
    payload = _checkout_payload(policy, address, (milk, 1))
    payload["total_cents"] = 1

    response = client.post("/api/orders", json=payload)

    assert response.status_code == 400
    assert response.get_json()["details"]["field"] == "total_cents"


def test_create_order_unknown_address(client, milk, address, policy):
    payload = _checkout_payload(policy, address, (milk, 1))
    payload["user_id"] = "someone-else"
    assert client.post("/api/orders", json=payload).status_code == 404


def test_create_order_invalid_body(client, db_session):
    response = client.post("/api/orders", data="nope", content_type="text/plain")
    assert response.status_code == 400


def test_fulfillment_flow(client, milk, water, address, policy):
    order = _place(client, policy, address, (milk, 2), (water, 1))
    oid = order["id"]

    assert client.post(f"/api/orders/{oid}/dispatcher", json={"dispatcher_id": "d-1"}).status_code == 200
    assert client.patch(
        f"/api/orders/{oid}/status", json={"status": "En preparación"}
    ).get_json()["order"]["status"] == "En preparación"

    response = client.post(f"/api/orders/{oid}/picking", json={"missing": {str(water.id): 1}})
    assert response.status_code == 200
    assert response.get_json()["order"]["fulfillment_status"] == "READY_WITH_MISSING"

    pickup = client.get("/api/orders/pickup").get_json()["orders"]
    assert [o["id"] for o in pickup] == [oid]

    response = client.post(f"/api/orders/{oid}/rider", json={"rider_id": "r-9"})
    assert response.get_json()["order"]["status"] == "En camino"
    assert [o["id"] for o in client.get("/api/orders/rider/r-9").get_json()["orders"]] == [oid]

    response = client.post(f"/api/orders/{oid}/delivered")
    assert response.get_json()["order"]["status"] == "Entregado"


def test_invalid_transition_is_conflict(client, milk, address, policy):
    order = _place(client, policy, address, (milk, 1))
    response = client.post(f"/api/orders/{order['id']}/delivered")
    assert response.status_code == 409


def test_cancel_route(client, milk, address, policy):
    order = _place(client, policy, address, (milk, 3))
    response = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "Cliente no responde"})
    assert response.status_code == 200
    assert response.get_json()["order"]["status"] == "Cancelado"
    assert client.get(f"/api/inventory/{milk.id}").get_json()["stock"] == 100


def test_transition_on_missing_order(client, db_session):
    assert client.post("/api/orders/999/delivered").status_code == 404
    assert client.get("/api/orders/999").status_code == 404


def test_fulfillment_patch_requires_status(client, milk, address, policy):
    order = _place(client, policy, address, (milk, 1))
    assert client.patch(f"/api/orders/{order['id']}/fulfillment", json={}).status_code == 400


def test_batch_sync_is_idempotent(client, milk, policy):
    cart = Cart(channel=CHANNEL_POS, policy=policy)
    cart.add_item(product_snapshot(milk), 3)
    sale = build_pos_sale(cart, "qr")

    first = client.post("/api/orders/batch", json={"orders": [sale]})
    assert first.status_code == 201
    assert first.get_json()["created"] == 1

    again = client.post("/api/orders/batch", json={"orders": [sale]})
    assert again.get_json()["created"] == 0
    assert again.get_json()["skipped"] == [sale["sale_uid"]]

    assert client.get(f"/api/inventory/{milk.id}").get_json()["stock"] == 97


def test_batch_requires_list(client, db_session):
    assert client.post("/api/orders/batch", json={"orders": "x"}).status_code == 400


# =============================================================================
# ADDRESSES
# =============================================================================

def test_address_crud(client, db_session):
    response = client.post("/api/users/u-2/addresses", json={
        "street": "Calle 21 de Calacoto",
        "city": "La Paz",
        "location": {"lat": -16.54, "lng": -68.08},
    })
    assert response.status_code == 201
    address = response.get_json()["address"]
    assert address["location"] == {"lat": -16.54, "lng": -68.08}

    assert len(client.get("/api/users/u-2/addresses").get_json()["items"]) == 1

    remaining = client.delete(f"/api/users/u-2/addresses/{address['id']}").get_json()["items"]
    assert remaining == []
    assert client.delete(f"/api/users/u-2/addresses/{address['id']}").status_code == 404


def test_address_requires_street(client, db_session):
    response = client.post("/api/users/u-2/addresses", json={"city": "La Paz"})
    assert response.status_code == 400


# =============================================================================
# INVENTORY
# =============================================================================

def test_receive_and_adjust(client, milk):
    response = client.post("/api/inventory/receive", json={"product_id": milk.id, "quantity": 24})
    assert response.status_code == 201
    assert response.get_json()["stock"] == 124

    response = client.post("/api/inventory/adjust", json={"product_id": milk.id, "quantity": -4, "reason": "Vencido"})
    assert response.status_code == 201
    assert response.get_json()["stock"] == 120

    movements = client.get(f"/api/inventory/movements?product_id={milk.id}&type=adjustment").get_json()["items"]
    assert [m["quantity_delta"] for m in movements] == [-4]


def test_inventory_validation(client, milk):
    assert client.post("/api/inventory/receive", json={"product_id": milk.id, "quantity": 0}).status_code == 400
    assert client.post("/api/inventory/adjust", json={"product_id": milk.id, "quantity": -1}).status_code == 400
    assert client.post("/api/inventory/receive", json={"product_id": 999, "quantity": 1}).status_code == 404
    assert client.get("/api/inventory/movements?type=transfer").status_code == 400
    assert client.get(f"/api/inventory/{milk.id}?as_of=ayer").status_code == 400
    assert client.get("/api/inventory/999").status_code == 404


# =============================================================================
# FINANCE
# =============================================================================

def test_expenses_routes(client, db_session):
    response = client.post("/api/finance/expenses", json={
        "amount_cents": 150000,
        "category": "Alquiler",
        "description": "Alquiler local central",
        "date": "2026-03-01T00:00:00Z",
    })
    assert response.status_code == 201
    assert client.get("/api/finance/expenses").get_json()["items"][0]["amount_cents"] == 150000

    bad = client.post("/api/finance/expenses", json={"amount_cents": 10, "category": "Viajes", "description": "x"})
    assert bad.status_code == 400


def test_returns_and_reports(client, milk, water, policy):
    cart = Cart(channel=CHANNEL_POS, policy=policy)
    cart.add_item(product_snapshot(water), 2)
    sale = build_pos_sale(cart, "cash")
    order_id = client.post("/api/orders/batch", json={"orders": [sale]}).get_json()["order_ids"][0]

    response = client.post("/api/finance/returns", json={
        "order_id": order_id,
        "items": [{"product_id": water.id, "quantity": 1}],
        "reason": "Producto dañado",
        "restocked": False,
    })
    assert response.status_code == 201
    assert response.get_json()["return"]["refund_amount_cents"] == 800

    assert len(client.get(f"/api/finance/returns?order_id={order_id}").get_json()["items"]) == 1

    summary = client.get("/api/finance/summary").get_json()
    assert summary["revenue_cents"] == 1600
    assert summary["refunds_cents"] == 800

    spoilage = client.get("/api/finance/spoilage").get_json()
    assert spoilage["total_units"] == 1
    assert spoilage["total_loss_cents"] == 450


def test_return_for_unknown_order(client, db_session):
    response = client.post("/api/finance/returns", json={
        "order_id": 999,
        "items": [{"product_id": 1, "quantity": 1}],
        "reason": "Otro",
    })
    assert response.status_code == 404
    assert client.get("/api/finance/summary?start=ayer").status_code == 400
