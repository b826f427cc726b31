import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from suitebook.models.transaction import Transaction

logger = logging.getLogger(__name__)

PAYMENT_SUCCESSFUL = "payment.successful"
PAYMENT_FAILED = "payment.failed"


@dataclass
class PaymentEvent:
    transaction: Transaction
    gateway: str
    reference: str
    gateway_response: dict[str, Any] = field(default_factory=dict)
    webhook: bool = False


Handler = Callable[[PaymentEvent], Awaitable[None]]


class NotificationSink(Protocol):
    def subscribe(self, event_name: str, handler: Handler) -> None: ...

    async def publish(self, event_name: str, event: PaymentEvent) -> None: ...


class PaymentEvents:
    """In-process publisher for payment outcomes.

    Handlers run one after another; a failing handler is logged and never
    reaches the publisher, so side effects cannot roll back a reconciled payment.
    """

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: Handler) -> None:
        self._handlers[event_name].append(handler)

    async def publish(self, event_name: str, event: PaymentEvent) -> None:
        for handler in list(self._handlers.get(event_name, ())):
            try:
                await handler(event)
            except Exception:
                logger.exception("payment event handler failed: %s %s", event_name, event.reference)
