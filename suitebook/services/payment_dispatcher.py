from suitebook.core.payment_log import PaymentLogger
from suitebook.models.booking import Booking
from suitebook.models.transaction import TransactionGateway
from suitebook.services.gateway_adapter import GatewayAdapter, InitializeResult, VerifyResult
from suitebook.services.payment_errors import UnsupportedGateway

REFERENCE_PREFIXES = {
    "PAY-": TransactionGateway.PAYSTACK,
    "FLW-": TransactionGateway.FLUTTERWAVE,
}


def normalize_gateway(name: str | None) -> TransactionGateway:
    try:
        return TransactionGateway((name or "").strip().lower())
    except ValueError:
        raise UnsupportedGateway(name or "")


def resolve_gateway(name: str | None, reference: str | None = None) -> TransactionGateway:
    """Explicit gateway name wins; otherwise infer it from the reference prefix."""
    if name and name.strip().lower() in {g.value for g in TransactionGateway}:
        return normalize_gateway(name)
    for prefix, gateway in REFERENCE_PREFIXES.items():
        if reference and reference.startswith(prefix):
            return gateway
    raise UnsupportedGateway(name or "")


class PaymentDispatcher:
    """Routes payment operations to the adapter for a gateway name."""

    def __init__(self, adapters: list[GatewayAdapter], log: PaymentLogger):
        self.adapters = {a.gateway: a for a in adapters}
        self.log = log

    def adapter(self, gateway: str | TransactionGateway) -> GatewayAdapter:
        key = gateway if isinstance(gateway, TransactionGateway) else normalize_gateway(gateway)
        try:
            return self.adapters[key]
        except KeyError:
            raise UnsupportedGateway(key.value)

    async def initiate(
        self, order: Booking, gateway_name: str, email: str, callback_base_url: str, user_id: int | None = None
    ) -> InitializeResult:
        gateway = normalize_gateway(gateway_name)
        self.log.info("payment.initiate.start", order_id=order.id, gateway=gateway.value, email=email)
        try:
            return await self.adapter(gateway).initialize(order, email, callback_base_url, user_id)
        except Exception as e:
            self.log.error("payment.initiate.failed", order_id=order.id, gateway=gateway.value, error=str(e))
            raise

    async def verify(self, reference: str, gateway_name: str, settle_pending: bool = True) -> VerifyResult:
        gateway = normalize_gateway(gateway_name)
        self.log.info("payment.verify.start", reference=reference, gateway=gateway.value)
        return await self.adapter(gateway).verify(reference, settle_pending=settle_pending)

    def public_keys(self) -> dict[str, str]:
        return {gateway.value: adapter.public_key for gateway, adapter in self.adapters.items()}
