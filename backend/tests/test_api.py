import hashlib
import hmac
import json
import time
from decimal import Decimal

from orderflow import models
from orderflow.models import OrderStatus

from conftest import ADMIN, BUYER, SUPPLIER

WEBHOOK_SECRET = b"test-webhook-secret"


def _signed(body: dict, *, ts: int | None = None, secret: bytes = WEBHOOK_SECRET):
    raw = json.dumps(body).encode()
    ts = int(time.time()) if ts is None else ts
    sig = hmac.new(secret, f"{ts}.".encode() + raw, hashlib.sha256).hexdigest()
    headers = {
        "Content-Type": "application/json",
        "X-Signature": f"sha256={sig}",
        "X-Request-Timestamp": str(ts),
    }
    return raw, headers


def _gateway_event(order, **overrides):
    body = {
        "transaction_ref": "GW-1001",
        "order_id": order.id,
        "amount": "30000",
        "fees": "900",
        "currency": "INR",
        "status": "completed",
        "transaction_type": "advance_payment",
        "payload": {"gateway": "razorpay", "payment_id": "pay_001"},
    }
    body.update(overrides)
    return body


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_identity_headers_are_required(client):
    r = client.get("/api/notifications")
    assert r.status_code == 401

    r = client.get("/api/notifications", headers={"X-User-Id": BUYER, "X-User-Role": "root"})
    assert r.status_code == 401


def test_buyer_creates_rfq(client, auth_headers):
    payload = {"title": "Die-cast gearbox covers", "details": {"items": [{"sku": "GBX-1", "qty": 300}]}}

    r = client.post("/api/rfqs", json=payload, headers=auth_headers(BUYER, "buyer"))
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "submitted"
    assert body["buyer_id"] == BUYER

    r = client.post("/api/rfqs", json=payload, headers=auth_headers(SUPPLIER, "supplier"))
    assert r.status_code == 403

    r = client.get(f"/api/rfqs/{body['id']}", headers=auth_headers("buyer-2", "buyer"))
    assert r.status_code == 404


def test_buyer_cannot_drive_admin_transitions(client, auth_headers, make_rfq):
    rfq, _invite = make_rfq()

    r = client.post(
        f"/api/rfqs/{rfq.id}/status",
        json={"status": "offers_published"},
        headers=auth_headers(BUYER, "buyer"),
    )
    assert r.status_code == 403


def test_invalid_transition_error_body(client, auth_headers, make_rfq):
    rfq, _invite = make_rfq()

    r = client.post(
        f"/api/rfqs/{rfq.id}/status",
        json={"status": "closed"},
        headers={**auth_headers(ADMIN, "admin"), "X-Request-ID": "req-abc"},
    )
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "INVALID_TRANSITION"
    assert body["request_id"] == "req-abc"
    assert body["context"]["from"] == "invited"
    assert body["context"]["to"] == "closed"
    assert r.headers["X-Request-ID"] == "req-abc"


def test_accept_offer_over_http(client, auth_headers, make_offer):
    _rfq, offer = make_offer()

    r = client.post(f"/api/offers/{offer.id}/accept", headers=auth_headers("buyer-2", "buyer"))
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"

    r = client.post(f"/api/offers/{offer.id}/accept", headers=auth_headers(BUYER, "buyer"))
    assert r.status_code == 200
    order = r.json()
    assert order["status"] == "created"
    assert Decimal(order["total_amount"]) == Decimal("100000")

    again = client.post(f"/api/offers/{offer.id}/accept", headers=auth_headers(BUYER, "buyer"))
    assert again.json()["id"] == order["id"]


def test_signed_webhook_records_payment(client, auth_headers, order):
    raw, headers = _signed(_gateway_event(order))

    r = client.post("/api/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 200
    txn = r.json()
    assert txn["status"] == "completed"
    assert Decimal(txn["net_amount"]) == Decimal("29100")
    assert txn["source"] == "gateway"

    # Gateways retry; the replay is absorbed.
    r = client.post("/api/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 200
    assert r.json()["id"] == txn["id"]

    r = client.get(f"/api/orders/{order.id}/balance", headers=auth_headers(BUYER, "buyer"))
    assert r.status_code == 200
    balance = r.json()
    assert Decimal(balance["paid_amount"]) == Decimal("29100")
    assert Decimal(balance["remaining_amount"]) == Decimal("70900")
    assert balance["is_fully_paid"] is False

    r = client.get(f"/api/orders/{order.id}/payment-status", headers=auth_headers(SUPPLIER, "supplier"))
    assert r.json()["payment_status"] == "partial"

    r = client.get(f"/api/orders/{order.id}/transactions", headers=auth_headers(ADMIN, "admin"))
    assert [t["transaction_ref"] for t in r.json()] == ["GW-1001"]

    r = client.get(f"/api/orders/{order.id}/balance", headers=auth_headers("buyer-2", "buyer"))
    assert r.status_code == 404


def test_webhook_rejects_bad_signatures(client, db_session, order):
    raw, headers = _signed(_gateway_event(order), secret=b"wrong-secret")
    r = client.post("/api/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 401

    raw, headers = _signed(_gateway_event(order), ts=int(time.time()) - 3600)
    r = client.post("/api/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 401

    raw, headers = _signed(_gateway_event(order))
    headers.pop("X-Signature")
    r = client.post("/api/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 401

    assert db_session.query(models.PaymentTransaction).count() == 0


def test_webhook_currency_mismatch(client, order):
    raw, headers = _signed(_gateway_event(order, currency="USD"))
    r = client.post("/api/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 422
    body = r.json()
    assert body["code"] == "CURRENCY_MISMATCH"
    assert body["request_id"]


def test_webhook_on_settled_transaction(client, order):
    raw, headers = _signed(_gateway_event(order))
    client.post("/api/payments/webhook", content=raw, headers=headers)

    raw, headers = _signed(_gateway_event(order, status="failed"))
    r = client.post("/api/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == "IMMUTABLE_TRANSACTION"


def test_settlements_are_admin_only(client, auth_headers, order):
    body = _gateway_event(order, transaction_ref="NEFT-77", fees="0", notes="Bank transfer")
    body.pop("payload")

    r = client.post("/api/payments/settlements", json=body, headers=auth_headers(BUYER, "buyer"))
    assert r.status_code == 403

    r = client.post("/api/payments/settlements", json=body, headers=auth_headers(ADMIN, "admin"))
    assert r.status_code == 200
    assert r.json()["source"] == "admin"


def test_order_status_and_production_updates(client, auth_headers, db_session, order):
    r = client.post(
        f"/api/orders/{order.id}/status",
        json={"status": "deposit_paid"},
        headers=auth_headers(SUPPLIER, "supplier"),
    )
    assert r.status_code == 403

    r = client.post(
        f"/api/orders/{order.id}/status",
        json={"status": "deposit_paid"},
        headers=auth_headers(ADMIN, "admin"),
    )
    assert r.status_code == 409

    r = client.post(
        f"/api/orders/{order.id}/production-updates",
        json={"stage": "Raw material received"},
        headers=auth_headers(SUPPLIER, "supplier"),
    )
    assert r.status_code == 201

    r = client.get(f"/api/orders/{order.id}/production-updates", headers=auth_headers(BUYER, "buyer"))
    assert [u["stage"] for u in r.json()] == ["Raw material received"]

    db_session.expire_all()
    assert db_session.get(models.Order, order.id).status == OrderStatus.created


def test_earlypay_over_http(client, auth_headers):
    payload = {
        "invoice_number": "INV-9",
        "amount": "250000",
        "currency": "INR",
        "delivered_confirmed": True,
        "buyer_invoice_approved": True,
        "expected_days": 3,
    }

    r = client.post("/api/earlypay", json=payload, headers=auth_headers(SUPPLIER, "supplier"))
    assert r.status_code == 201
    req = r.json()
    assert Decimal(req["discount_amount"]) == Decimal("7500")
    assert Decimal(req["net_payout"]) == Decimal("242500")
    assert req["status"] == "submitted"

    r = client.post(
        "/api/earlypay",
        json={**payload, "buyer_invoice_approved": False},
        headers=auth_headers(SUPPLIER, "supplier"),
    )
    assert r.status_code == 422
    assert r.json()["code"] == "INELIGIBLE_EARLY_PAY"
    assert r.json()["context"]["precondition"] == "buyer_invoice_approved"

    r = client.post(
        f"/api/earlypay/{req['id']}/status",
        json={"status": "approved"},
        headers=auth_headers(SUPPLIER, "supplier"),
    )
    assert r.status_code == 403

    r = client.post(
        f"/api/earlypay/{req['id']}/status",
        json={"status": "approved"},
        headers=auth_headers(ADMIN, "admin"),
    )
    assert r.status_code == 200
    assert r.json()["status"] == "approved"

    r = client.get("/api/earlypay?status=approved", headers=auth_headers(SUPPLIER, "supplier"))
    assert [x["id"] for x in r.json()] == [req["id"]]


def test_notification_endpoints(client, auth_headers, order):
    headers = auth_headers(BUYER, "buyer")

    r = client.get("/api/notifications/unread-count", headers=headers)
    unread = r.json()["unread"]
    assert unread >= 1

    listed = client.get("/api/notifications", headers=headers).json()
    assert any(n["type"] == "order_created" for n in listed)

    first = listed[0]["id"]
    r = client.post(f"/api/notifications/{first}/read", headers=headers)
    assert r.status_code == 200
    assert r.json()["is_read"] is True

    r = client.post(f"/api/notifications/{first}/read", headers=auth_headers(SUPPLIER, "supplier"))
    assert r.status_code == 404

    r = client.post("/api/notifications/read-all", headers=headers)
    assert r.json()["updated"] == unread - 1
    assert client.get("/api/notifications/unread-count", headers=headers).json()["unread"] == 0


def test_supplier_verification_over_http(client, auth_headers):
    body = {"verified_status": "gold", "company_name": "Coimbatore Forge Works"}

    r = client.post(
        f"/api/suppliers/{SUPPLIER}/verification", json=body, headers=auth_headers(SUPPLIER, "supplier")
    )
    assert r.status_code == 403

    r = client.post(
        f"/api/suppliers/{SUPPLIER}/verification", json=body, headers=auth_headers(ADMIN, "admin")
    )
    assert r.status_code == 200
    assert r.json()["verified_status"] == "gold"
    assert r.json()["verified_by"] == ADMIN

    r = client.get(f"/api/suppliers/{SUPPLIER}", headers=auth_headers(SUPPLIER, "supplier"))
    assert r.status_code == 200
    assert r.json()["company_name"] == "Coimbatore Forge Works"

    r = client.get(f"/api/suppliers/{SUPPLIER}", headers=auth_headers("supplier-2", "supplier"))
    assert r.status_code == 404

    r = client.get("/api/notifications", headers=auth_headers(SUPPLIER, "supplier"))
    assert [n["type"] for n in r.json()] == ["supplier_verified"]

    r = client.get("/api/suppliers?verified_only=true", headers=auth_headers(ADMIN, "admin"))
    assert [p["supplier_id"] for p in r.json()] == [SUPPLIER]
