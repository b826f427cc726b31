import pytest

from conftest import FLUTTERWAVE_HASH, flutterwave_init_ok, flutterwave_verify
from suitebook.models.booking import Booking
from suitebook.services.payment_errors import AmountMismatch
from suitebook.services.reconciliation import ReconciliationStore


@pytest.mark.anyio
async def test_initialize_builds_hosted_link_payload(services, gateway, booking, sessions):
    flutterwave_init_ok(gateway)
    result = await services.flutterwave.initialize(booking, "guest@example.com", "https://api.suitebook.test", user_id=7)

    assert result.reference.startswith(f"FLW-{booking.id}-")
    assert result.redirect_target == "https://checkout.flutterwave.com/pay/xyz"
    assert result.to_dict() == {"link": "https://checkout.flutterwave.com/pay/xyz", "reference": result.reference}

    sent = gateway.last_json()
    assert sent["tx_ref"] == result.reference
    assert sent["amount"] == 25000.0
    assert sent["currency"] == "NGN"
    assert sent["customer"] == {"email": "guest@example.com"}
    assert sent["meta"] == {"order_id": booking.id}
    assert sent["redirect_url"] == (
        f"https://api.suitebook.test/verify-payment?gateway=flutterwave&reference={result.reference}"
    )

    async with sessions() as db:
        tx = await ReconciliationStore(db).get_transaction(result.reference)
        assert tx.gateway == "flutterwave"
        assert tx.user_id == 7


@pytest.mark.anyio
async def test_verify_successful_charge(services, gateway, booking, sessions, recorder):
    flutterwave_init_ok(gateway)
    result = await services.flutterwave.initialize(booking, "guest@example.com", "http://test")
    flutterwave_verify(gateway, result.reference, amount="25000.00")

    verified = await services.flutterwave.verify(result.reference)

    assert verified.success is True
    verify_request = gateway.requests[-1]
    assert verify_request.url.path == "/v3/transactions/verify_by_reference"
    assert verify_request.url.params["tx_ref"] == result.reference
    async with sessions() as db:
        b = await db.get(Booking, booking.id)
        assert b.payment_status == "PAID"
    [event] = recorder.named("payment.successful")
    assert event.gateway == "flutterwave"
    assert event.gateway_response["status"] == "successful"


@pytest.mark.anyio
async def test_verify_amount_mismatch(services, gateway, booking):
    flutterwave_init_ok(gateway)
    result = await services.flutterwave.initialize(booking, "guest@example.com", "http://test")
    flutterwave_verify(gateway, result.reference, amount=2500)

    with pytest.raises(AmountMismatch):
        await services.flutterwave.verify(result.reference)


@pytest.mark.anyio
async def test_webhook_signature_compares_verif_hash(services):
    assert services.flutterwave.validate_webhook_signature(b"{}", FLUTTERWAVE_HASH) is True
    assert services.flutterwave.validate_webhook_signature(b"{}", "wrong") is False
    assert services.flutterwave.validate_webhook_signature(b"{}", None) is False
    assert services.flutterwave.validate_webhook_signature(b"{}", "") is False


@pytest.mark.anyio
async def test_webhook_signature_without_configured_hash(services):
    services.flutterwave.webhook_hash = ""
    assert services.flutterwave.validate_webhook_signature(b"{}", "") is False
    assert services.flutterwave.validate_webhook_signature(b"{}", "anything") is False
