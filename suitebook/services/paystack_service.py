import hashlib
import hmac
from decimal import Decimal, ROUND_HALF_UP

from suitebook.models.booking import Booking
from suitebook.models.transaction import TransactionGateway
from suitebook.services.gateway_adapter import GatewayAdapter, InitializeResult
from suitebook.services.reconciliation import to_money


def to_kobo(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaystackService(GatewayAdapter):
    """Paystack hosted checkout. Amounts travel in kobo; top-level ``status`` is a bool."""

    gateway = TransactionGateway.PAYSTACK
    reference_prefix = "PAY"
    initialize_path = "/transaction/initialize"
    failed_statuses = frozenset({"failed", "abandoned", "reversed"})

    def __init__(self, *, webhook_secret: str = "", **kwargs):
        super().__init__(**kwargs)
        self.webhook_secret = webhook_secret or self.secret_key

    def build_initialize_payload(self, order: Booking, email: str, reference: str, callback_base_url: str) -> dict:
        return {
            "email": email,
            "amount": to_kobo(order.total_amount),
            "reference": reference,
            "callback_url": f"{callback_base_url}/verify-payment?gateway=paystack",
            "metadata": {"order_id": order.id},
        }

    def initialize_succeeded(self, response: dict) -> bool:
        return bool(response.get("status"))

    def build_initialize_result(self, reference: str, response: dict) -> InitializeResult:
        data = response.get("data") or {}
        return InitializeResult(
            gateway=self.gateway,
            reference=reference,
            redirect_target=data.get("authorization_url", ""),
            access_code=data.get("access_code"),
        )

    def verify_path(self, reference: str) -> str:
        return f"/transaction/verify/{reference}"

    def verify_call_succeeded(self, response: dict) -> bool:
        return bool(response.get("status"))

    def payment_succeeded(self, data: dict) -> bool:
        return data.get("status") == "success"

    def paid_amount(self, data: dict) -> Decimal | None:
        kobo = to_money(data.get("amount"))
        return None if kobo is None else kobo / 100

    def webhook_reference(self, data: dict) -> str | None:
        return data.get("reference")

    def validate_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not signature or not self.webhook_secret:
            return False
        expected = hmac.new(self.webhook_secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)
