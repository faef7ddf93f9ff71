import json
from decimal import Decimal

import pytest

from tests.fakes import FakePaymentClient


@pytest.fixture
def guest_cart(client, variant_id, other_variant_id):
    client.post("/api/cart/items", json={"product_id": 1, "variant_id": variant_id, "quantity": 2, "session_id": "g1"})
    client.post("/api/cart/items", json={"product_id": 2, "variant_id": other_variant_id, "quantity": 1, "session_id": "g1"})


def _place_order(client, shipping, method="card"):
    resp = client.post("/api/orders", json={"session_id": "g1", "shipping": shipping, "payment_method": method})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _webhook(client, event_type, data_object, signature=FakePaymentClient.VALID_SIGNATURE):
    payload = json.dumps({"id": "evt_1", "type": event_type, "data": {"object": data_object}})
    return client.post(
        "/api/payments/webhook",
        content=payload,
        headers={"stripe-signature": signature, "content-type": "application/json"},
    )


def _intent(order):
    return {"id": order["payment_reference"], "metadata": {"order_id": str(order["id"])}}


def test_create_order_returns_payment_handle(client, guest_cart, shipping, variant_id, reserved):
    body = _place_order(client, shipping)

    order = body["order"]
    assert body["client_secret"].endswith("_secret_abc")
    assert order["order_number"].startswith("ORD-")
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert Decimal(order["total_amount"]) == Decimal("217.00")
    assert len(order["items"]) == 2
    assert reserved(variant_id) == 2

    assert client.get("/api/cart", params={"session_id": "g1"}).json()["items"] == []


def test_create_order_from_empty_cart(client, shipping):
    resp = client.post("/api/orders", json={"session_id": "nobody", "shipping": shipping})

    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "empty_cart"


def test_order_reads_are_owner_only(client, guest_cart, shipping):
    order_id = _place_order(client, shipping)["order"]["id"]

    assert client.get(f"/api/orders/{order_id}", params={"session_id": "g1"}).status_code == 200
    foreign = client.get(f"/api/orders/{order_id}", params={"session_id": "g2"})
    assert foreign.status_code == 403
    assert foreign.json()["detail"]["message"] == "Order belongs to another customer"
    assert client.get("/api/orders/999", params={"session_id": "g1"}).status_code == 404

    listed = client.get("/api/orders", params={"session_id": "g1"}).json()
    assert [o["id"] for o in listed] == [order_id]


def test_buy_now(client, shipping, other_variant_id, reserved):
    resp = client.post(
        "/api/orders/buy-now",
        json={"product_id": 2, "variant_id": other_variant_id, "quantity": 1, "shipping": shipping,
              "payment_method": "cash_on_delivery"},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["client_secret"] is None
    assert body["order"]["session_id"]
    assert reserved(other_variant_id) == 1


def test_webhook_success_and_replay(client, payment_client, guest_cart, shipping, variant_id, reserved):
    order = _place_order(client, shipping)["order"]

    first = _webhook(client, "payment_intent.succeeded", _intent(order))
    replay = _webhook(client, "payment_intent.succeeded", _intent(order))

    assert first.status_code == 200
    assert first.json() == {"received": True, "result": "applied"}
    assert replay.status_code == 200
    assert replay.json() == {"received": True, "result": "replay"}
    assert reserved(variant_id) == 2

    fetched = client.get(f"/api/orders/{order['id']}", params={"session_id": "g1"}).json()
    assert fetched["payment_status"] == "paid"


def test_webhook_failure_releases_once(client, guest_cart, shipping, variant_id, other_variant_id, reserved):
    order = _place_order(client, shipping)["order"]

    _webhook(client, "payment_intent.payment_failed", _intent(order))
    replay = _webhook(client, "payment_intent.payment_failed", _intent(order))

    assert replay.json()["result"] == "replay"
    assert reserved(variant_id) == 0
    assert reserved(other_variant_id) == 0


def test_webhook_finds_order_by_reference(client, guest_cart, shipping, variant_id, reserved):
    order = _place_order(client, shipping)["order"]

    resp = _webhook(client, "payment_intent.canceled", {"id": order["payment_reference"], "metadata": {}})

    assert resp.json()["result"] == "applied"
    assert reserved(variant_id) == 0


def test_webhook_ignores_unknown_events_and_orders(client):
    assert _webhook(client, "charge.refunded", {"id": "ch_1"}).json() == {"received": True, "result": None}
    assert _webhook(client, "payment_intent.succeeded", {"id": "pi_missing"}).json() == {
        "received": True,
        "result": None,
    }


def test_webhook_rejects_bad_signature(client):
    resp = _webhook(client, "payment_intent.succeeded", {"id": "pi_1"}, signature="t=1,v1=forged")
    assert resp.status_code == 400


def test_admin_requires_admin_claim(client, auth):
    assert client.get("/api/admin/orders").status_code == 401
    assert client.get("/api/admin/orders", headers=auth("42")).status_code == 403
    assert client.get("/api/admin/orders", headers=auth("1", is_admin=True)).status_code == 200


def test_admin_fulfilment_flow(client, auth, guest_cart, shipping):
    admin = auth("1", is_admin=True)
    order = _place_order(client, shipping)["order"]
    order_id = order["id"]

    resp = client.post(f"/api/admin/orders/{order_id}/confirm", headers=admin)
    assert resp.status_code == 409

    _webhook(client, "payment_intent.succeeded", _intent(order))

    assert client.post(f"/api/admin/orders/{order_id}/confirm", headers=admin).json()["status"] == "preparing"
    shipped = client.post(f"/api/admin/orders/{order_id}/ship", json={"tracking_number": "1Z999"}, headers=admin).json()
    assert shipped["status"] == "shipping"
    assert shipped["tracking_number"] == "1Z999"
    assert client.post(f"/api/admin/orders/{order_id}/deliver", headers=admin).json()["status"] == "delivered"

    assert client.post(f"/api/admin/orders/{order_id}/cancel", headers=admin).status_code == 409
    assert client.get("/api/admin/orders/counts", headers=admin).json() == {"delivered": 1}
    listed = client.get("/api/admin/orders", params={"status": "delivered"}, headers=admin).json()
    assert [o["id"] for o in listed] == [order_id]


def test_admin_cancel_releases_stock(client, auth, payment_client, guest_cart, shipping, variant_id, reserved):
    admin = auth("1", is_admin=True)
    order = _place_order(client, shipping)["order"]

    resp = client.post(f"/api/admin/orders/{order['id']}/cancel", headers=admin)

    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert reserved(variant_id) == 0
    assert payment_client.cancelled == [order["payment_reference"]]

    assert client.get("/api/admin/orders/999", headers=admin).status_code == 404


def test_admin_cancel_after_customer_paid(client, auth, payment_client, guest_cart, shipping, variant_id, reserved):
    admin = auth("1", is_admin=True)
    order = _place_order(client, shipping)["order"]
    payment_client.pay(order["payment_reference"])

    resp = client.post(f"/api/admin/orders/{order['id']}/cancel", headers=admin)

    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "invalid_transition"
    assert reserved(variant_id) == 2
    assert client.get(f"/api/admin/orders/{order['id']}", headers=admin).json()["payment_status"] == "paid"

    # webhook dochodzi po fakcie
    assert _webhook(client, "payment_intent.succeeded", _intent(order)).json()["result"] == "replay"
