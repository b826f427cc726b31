import hmac
from decimal import Decimal
from urllib.parse import quote

from suitebook.models.booking import Booking
from suitebook.models.transaction import TransactionGateway
from suitebook.services.gateway_adapter import GatewayAdapter, InitializeResult
from suitebook.services.reconciliation import to_money


class FlutterwaveService(GatewayAdapter):
    """Flutterwave Standard checkout. Amounts travel in naira; ``status`` is the string "success"."""

    gateway = TransactionGateway.FLUTTERWAVE
    reference_prefix = "FLW"
    initialize_path = "/payments"
    failed_statuses = frozenset({"failed", "cancelled"})

    def __init__(self, *, webhook_hash: str = "", encryption_key: str = "", **kwargs):
        super().__init__(**kwargs)
        self.webhook_hash = webhook_hash
        self.encryption_key = encryption_key

    def build_initialize_payload(self, order: Booking, email: str, reference: str, callback_base_url: str) -> dict:
        return {
            "tx_ref": reference,
            "amount": float(to_money(order.total_amount)),
            "currency": self.currency,
            "redirect_url": (
                f"{callback_base_url}/verify-payment?gateway=flutterwave&reference={quote(reference, safe='')}"
            ),
            "customer": {"email": email},
            "meta": {"order_id": order.id},
        }

    def initialize_succeeded(self, response: dict) -> bool:
        return response.get("status") == "success"

    def build_initialize_result(self, reference: str, response: dict) -> InitializeResult:
        data = response.get("data") or {}
        return InitializeResult(gateway=self.gateway, reference=reference, redirect_target=data.get("link", ""))

    def verify_path(self, reference: str) -> str:
        # /transactions/{id}/verify takes the numeric provider id; we only hold tx_ref
        return f"/transactions/verify_by_reference?tx_ref={quote(reference, safe='')}"

    def verify_call_succeeded(self, response: dict) -> bool:
        return response.get("status") == "success"

    def payment_succeeded(self, data: dict) -> bool:
        return data.get("status") == "successful"

    def paid_amount(self, data: dict) -> Decimal | None:
        return to_money(data.get("amount"))

    def webhook_reference(self, data: dict) -> str | None:
        return data.get("tx_ref")

    def validate_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not signature or not self.webhook_hash:
            return False
        return hmac.compare_digest(signature.encode("utf-8"), self.webhook_hash.encode("utf-8"))
