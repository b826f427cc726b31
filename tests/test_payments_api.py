import json

import httpx
import pytest

from conftest import (
    FLUTTERWAVE_HASH,
    OPS_TOKEN,
    flutterwave_init_ok,
    flutterwave_verify,
    paystack_init_ok,
    paystack_signature,
    paystack_verify,
)
from suitebook.models.booking import Booking
from suitebook.services.reconciliation import ReconciliationStore


async def _initialize(client, booking, gateway="paystack") -> dict:
    r = await client.post("/api/v1/payments/initialize", json={"bookingId": booking.id, "gateway": gateway})
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.anyio
async def test_health(client):
    r = await client.get("/health")
    assert r.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_initialize_paystack_creates_pending_payment(client, gateway, booking, sessions):
    paystack_init_ok(gateway)
    data = await _initialize(client, booking)

    assert data["reference"].startswith(f"PAY-{booking.id}-")
    assert data["authorization_url"] == "https://checkout.paystack.com/abc123"
    assert data["link"] is None
    assert data["gateway"] == "PAYSTACK"
    assert data["amount"] == 25000.0
    assert data["transactionId"].startswith("PAYSTACK-")
    assert gateway.last_json()["callback_url"] == "http://test/verify-payment?gateway=paystack"
    assert gateway.last_json()["email"] == "guest@example.com"

    async with sessions() as db:
        payment = await ReconciliationStore(db).get_payment(data["reference"])
        assert payment.status == "PENDING"
        assert payment.payment_details["initialization"]["authorization_url"] == data["authorization_url"]


@pytest.mark.anyio
async def test_initialize_flutterwave_returns_link(client, gateway, booking):
    flutterwave_init_ok(gateway)
    data = await _initialize(client, booking, gateway="Flutterwave")
    assert data["link"] == "https://checkout.flutterwave.com/pay/xyz"
    assert data["gateway"] == "FLUTTERWAVE"


@pytest.mark.anyio
async def test_initialize_rejects_unknown_booking_and_gateway(client, booking):
    r = await client.post("/api/v1/payments/initialize", json={"bookingId": 999, "gateway": "paystack"})
    assert r.status_code == 404

    r = await client.post("/api/v1/payments/initialize", json={"bookingId": booking.id, "gateway": "stripe"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Unsupported payment gateway"

    r = await client.post("/api/v1/payments/initialize", json={"bookingId": 0, "gateway": "paystack"})
    assert r.status_code == 422


@pytest.mark.anyio
async def test_initialize_gateway_timeout_is_504(client, gateway, booking):
    gateway.fail("POST", "/transaction/initialize", httpx.ReadTimeout("slow"))
    r = await client.post("/api/v1/payments/initialize", json={"bookingId": booking.id, "gateway": "paystack"})
    assert r.status_code == 504
    assert r.json()["detail"] == "Payment gateway timeout. Please try again."


@pytest.mark.anyio
async def test_initialize_gateway_error_is_400(client, gateway, booking):
    gateway.reply("POST", "/transaction/initialize", {"status": False, "message": "Invalid key"}, status=401)
    r = await client.post("/api/v1/payments/initialize", json={"bookingId": booking.id, "gateway": "paystack"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid key"


@pytest.mark.anyio
async def test_verify_marks_payment_paid(client, gateway, booking, sessions):
    paystack_init_ok(gateway)
    reference = (await _initialize(client, booking))["reference"]
    paystack_verify(gateway, reference)

    r = await client.post("/api/v1/payments/verify", json={"trxref": reference})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "PAID"
    assert r.json()["reference"] == reference

    async with sessions() as db:
        payment = await ReconciliationStore(db).get_payment(reference)
        assert payment.payment_details["verification"]["status"] == "success"
        assert (await db.get(Booking, booking.id)).status == "CONFIRMED"


@pytest.mark.anyio
async def test_verify_requires_reference(client):
    r = await client.post("/api/v1/payments/verify", json={"gateway": "paystack"})
    assert r.status_code == 400


@pytest.mark.anyio
async def test_verify_amount_mismatch_is_400(client, gateway, booking):
    paystack_init_ok(gateway)
    reference = (await _initialize(client, booking))["reference"]
    paystack_verify(gateway, reference, amount=100)

    r = await client.post("/api/v1/payments/verify", json={"reference": reference})
    assert r.status_code == 400
    assert r.json()["detail"] == "Payment amount mismatch"


@pytest.mark.anyio
async def test_verify_provider_500_is_400(client, gateway):
    gateway.reply("GET", "/transaction/verify/PAY-1-1", {"message": "boom"}, status=500)
    r = await client.post("/api/v1/payments/verify", json={"reference": "PAY-1-1"})
    assert r.status_code == 400


@pytest.mark.anyio
async def test_verify_timeout_is_504(client, gateway):
    gateway.fail("GET", "/transaction/verify/PAY-1-1", httpx.ReadTimeout("slow"))
    r = await client.post("/api/v1/payments/verify", json={"reference": "PAY-1-1"})
    assert r.status_code == 504


@pytest.mark.anyio
async def test_browser_callback_redirects_to_storefront(client, gateway, booking):
    flutterwave_init_ok(gateway)
    reference = (await _initialize(client, booking, gateway="flutterwave"))["reference"]
    flutterwave_verify(gateway, reference)

    r = await client.get("/verify-payment", params={"tx_ref": reference, "gateway": "flutterwave"})
    assert r.status_code == 302
    assert r.headers["location"] == f"http://localhost:3039/order/success?ref={reference}&gateway=flutterwave"


@pytest.mark.anyio
async def test_browser_callback_failure_redirects_to_failed(client, gateway):
    gateway.reply("GET", "/transaction/verify/PAY-1-1", {"status": False, "message": "not found"})
    r = await client.get("/verify-payment", params={"reference": "PAY-1-1"})
    assert r.status_code == 302
    assert r.headers["location"].startswith("http://localhost:3039/order/failed?ref=PAY-1-1")


@pytest.mark.anyio
async def test_payment_config_exposes_public_keys_only(client):
    r = await client.get("/api/v1/payments/config")
    assert r.json() == {"paystackPublicKey": "pk_test_paystack", "flutterwavePublicKey": "FLWPUBK_TEST-public"}


@pytest.mark.anyio
async def test_transaction_lookup(client, gateway, booking):
    r = await client.get("/api/v1/payments/transactions/PAY-404-1")
    assert r.status_code == 404

    paystack_init_ok(gateway)
    reference = (await _initialize(client, booking))["reference"]
    r = await client.get(f"/api/v1/payments/transactions/{reference}")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["transaction"]["status"] == "pending"
    assert data["booking"]["bookingReference"] == "BK-1001"
    assert data["payment"]["status"] == "PENDING"
    assert data["gateway_fresh_status"] is None

    paystack_verify(gateway, reference)
    r = await client.get(f"/api/v1/payments/transactions/{reference}", params={"fresh": "true"})
    data = r.json()["data"]
    assert data["transaction"]["status"] == "success"
    assert data["gateway_fresh_status"]["status"] == "success"


@pytest.mark.anyio
async def test_admin_payments_requires_ops_token(client, gateway, booking):
    paystack_init_ok(gateway)
    await _initialize(client, booking)

    assert (await client.get("/api/v1/admin/payments")).status_code == 401
    r = await client.get("/api/v1/admin/payments", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401

    r = await client.get("/api/v1/admin/payments", headers={"Authorization": f"Bearer {OPS_TOKEN}"})
    assert r.status_code == 200
    assert [p["gateway"] for p in r.json()] == ["PAYSTACK"]


@pytest.mark.anyio
async def test_paystack_webhook_over_http(client, gateway, booking, sessions):
    paystack_init_ok(gateway)
    reference = (await _initialize(client, booking))["reference"]
    body = json.dumps({"event": "charge.success", "data": {"reference": reference, "amount": 2500000}}).encode()

    r = await client.post("/webhook/paystack", content=body, headers={"x-paystack-signature": "bad"})
    assert r.status_code == 401

    r = await client.post(
        "/webhook/paystack",
        content=body,
        headers={"x-paystack-signature": paystack_signature(body), "content-type": "application/json"},
    )
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}

    async with sessions() as db:
        assert (await ReconciliationStore(db).get_payment(reference)).status == "PAID"


@pytest.mark.anyio
async def test_flutterwave_webhook_over_http(client, gateway, booking, sessions):
    flutterwave_init_ok(gateway)
    reference = (await _initialize(client, booking, gateway="flutterwave"))["reference"]
    body = json.dumps(
        {"event": "charge.completed", "data": {"tx_ref": reference, "amount": 25000, "status": "successful"}}
    ).encode()

    r = await client.post("/webhook/flutterwave", content=body)
    assert r.status_code == 401
    assert r.json() == {"status": "unauthorized"}

    r = await client.post("/webhook/flutterwave", content=body, headers={"verif-hash": FLUTTERWAVE_HASH})
    assert r.status_code == 200

    async with sessions() as db:
        assert (await db.get(Booking, booking.id)).payment_status == "PAID"


@pytest.mark.anyio
async def test_unhandled_webhook_event_over_http_is_acknowledged(client):
    body = json.dumps({"event": "transfer.success", "data": {"reference": "TRF-1"}}).encode()
    r = await client.post(
        "/webhook/paystack",
        content=body,
        headers={"x-paystack-signature": paystack_signature(body), "content-type": "application/json"},
    )
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}

    r = await client.post(
        "/webhook/flutterwave",
        content=json.dumps({"event": "transfer.completed", "data": {}}).encode(),
        headers={"verif-hash": FLUTTERWAVE_HASH},
    )
    assert r.status_code == 200
