from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from suitebook.core.config import Settings
from suitebook.core.payment_log import PaymentLogs, open_payment_logs
from suitebook.services.flutterwave_service import FlutterwaveService
from suitebook.services.gateway_client import GatewayClient
from suitebook.services.notifications import PaymentEvents
from suitebook.services.payment_dispatcher import PaymentDispatcher
from suitebook.services.payment_listeners import register_payment_listeners
from suitebook.services.paystack_service import PaystackService
from suitebook.services.webhook_service import WebhookService


@dataclass
class PaymentServices:
    logs: PaymentLogs
    events: PaymentEvents
    paystack: PaystackService
    flutterwave: FlutterwaveService
    dispatcher: PaymentDispatcher
    webhooks: WebhookService

    def close(self) -> None:
        self.logs.close()


def build_payment_services(
    cfg: Settings,
    sessions: async_sessionmaker[AsyncSession],
    transport: httpx.AsyncBaseTransport | None = None,
    logs: PaymentLogs | None = None,
) -> PaymentServices:
    """Wire loggers, event hook, gateway adapters and webhook ingress for one process."""
    logs = logs or open_payment_logs(cfg.PAYMENT_LOG_DIR)
    events = PaymentEvents()
    register_payment_listeners(events, sessions, logs.payments)

    shared = dict(sessions=sessions, events=events, log=logs.payments, currency=cfg.PAYMENT_CURRENCY)
    paystack = PaystackService(
        http=GatewayClient(
            cfg.PAYSTACK_BASE_URL,
            {"Authorization": f"Bearer {cfg.PAYSTACK_SECRET_KEY}"},
            timeout=cfg.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        ),
        secret_key=cfg.PAYSTACK_SECRET_KEY,
        public_key=cfg.PAYSTACK_PUBLIC_KEY,
        webhook_secret=cfg.PAYSTACK_WEBHOOK_SECRET,
        **shared,
    )
    flutterwave = FlutterwaveService(
        http=GatewayClient(
            cfg.FLUTTERWAVE_BASE_URL,
            {"Authorization": f"Bearer {cfg.FLUTTERWAVE_SECRET_KEY}"},
            timeout=cfg.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        ),
        secret_key=cfg.FLUTTERWAVE_SECRET_KEY,
        public_key=cfg.FLUTTERWAVE_PUBLIC_KEY,
        webhook_hash=cfg.FLUTTERWAVE_WEBHOOK_HASH,
        encryption_key=cfg.FLUTTERWAVE_ENCRYPTION_KEY,
        **shared,
    )
    return PaymentServices(
        logs=logs,
        events=events,
        paystack=paystack,
        flutterwave=flutterwave,
        dispatcher=PaymentDispatcher([paystack, flutterwave], logs.payments),
        webhooks=WebhookService(
            paystack=paystack,
            flutterwave=flutterwave,
            sessions=sessions,
            events=events,
            webhook_log=logs.webhooks,
            payment_log=logs.payments,
        ),
    )
