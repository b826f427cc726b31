"""Inbound gateway webhooks.

Signature is checked before anything else. Once it passes, the provider always
gets ``200 {"status": "ok"}``: processing problems are logged, never returned,
so the provider does not retry a notification we already looked at.
"""
import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from suitebook.core.payment_log import PaymentLogger
from suitebook.models.payment import PaymentStatus
from suitebook.models.transaction import TransactionStatus
from suitebook.services.audit_service import log_audit
from suitebook.services.flutterwave_service import FlutterwaveService
from suitebook.services.gateway_adapter import GatewayAdapter
from suitebook.services.notifications import PAYMENT_SUCCESSFUL, NotificationSink, PaymentEvent
from suitebook.services.paystack_service import PaystackService
from suitebook.services.reconciliation import ReconciliationStore, amounts_match, to_money, utc_now_iso

logger = logging.getLogger(__name__)

OK = (200, {"status": "ok"})


class WebhookService:
    def __init__(
        self,
        *,
        paystack: PaystackService,
        flutterwave: FlutterwaveService,
        sessions: async_sessionmaker[AsyncSession],
        events: NotificationSink,
        webhook_log: PaymentLogger,
        payment_log: PaymentLogger,
    ):
        self.paystack = paystack
        self.flutterwave = flutterwave
        self.sessions = sessions
        self.events = events
        self.log = webhook_log
        self.payment_log = payment_log

    async def handle_paystack(self, raw_body: bytes, signature: str | None) -> tuple[int, dict]:
        self.log.info(
            "paystack.webhook.received",
            headers={"x-paystack-signature": signature},
            payload=_preview(raw_body),
        )
        if not self.paystack.validate_webhook_signature(raw_body, signature):
            self.log.error("paystack.webhook.invalid_signature", signature_provided=bool(signature))
            return 401, {"status": "invalid signature"}

        payload = self._parse(raw_body, "paystack")
        if payload is None:
            return OK
        event = payload.get("event")
        data = payload.get("data") or {}
        try:
            if event == "charge.success":
                await self._charge_succeeded(self.paystack, data)
            elif event == "charge.failed":
                await self._charge_failed(self.paystack, data)
            else:
                self.log.info("paystack.webhook.unhandled_event", webhook_event=event)
        except Exception as e:
            logger.exception("paystack webhook processing failed")
            self.log.error("paystack.webhook.processing_error", webhook_event=event, error=str(e))
        return OK

    async def handle_flutterwave(self, raw_body: bytes, signature: str | None) -> tuple[int, dict]:
        self.log.info(
            "flutterwave.webhook.received",
            headers={"verif-hash": signature},
            payload=_preview(raw_body),
        )
        if not self.flutterwave.validate_webhook_signature(raw_body, signature):
            self.log.error("flutterwave.webhook.invalid_signature", signature_provided=bool(signature))
            return 401, {"status": "unauthorized"}

        payload = self._parse(raw_body, "flutterwave")
        if payload is None:
            return OK
        event = payload.get("event")
        data = payload.get("data") or {}
        try:
            if event == "charge.completed":
                if data.get("status") == "successful":
                    await self._charge_succeeded(self.flutterwave, data)
                else:
                    self.log.info(
                        "flutterwave.webhook.non_success_status",
                        reference=data.get("tx_ref"),
                        status=data.get("status"),
                    )
            elif event == "charge.failed":
                await self._charge_failed(self.flutterwave, data)
            else:
                self.log.info("flutterwave.webhook.unhandled_event", webhook_event=event)
        except Exception as e:
            logger.exception("flutterwave webhook processing failed")
            self.log.error("flutterwave.webhook.processing_error", webhook_event=event, error=str(e))
        return OK

    def _parse(self, raw_body: bytes, gw: str) -> dict | None:
        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError as e:
            self.log.error(f"{gw}.webhook.malformed_payload", error=str(e))
            return None
        if not isinstance(payload, dict):
            self.log.error(f"{gw}.webhook.malformed_payload", error="payload is not an object")
            return None
        return payload

    async def _charge_succeeded(self, adapter: GatewayAdapter, data: dict) -> None:
        gw = adapter.gateway.value
        reference = adapter.webhook_reference(data)
        if not reference:
            self.log.error(f"{gw}.webhook.missing_reference", data=data)
            return

        async with self.sessions() as db:
            store = ReconciliationStore(db)
            tx = await store.get_transaction(reference)
            if tx is None:
                self.log.error(f"{gw}.webhook.transaction_not_found", reference=reference)
                return
            if tx.status == TransactionStatus.SUCCESS.value:
                self.log.info(f"{gw}.webhook.idempotent_success", reference=reference)
                return
            if tx.status == TransactionStatus.FAILED.value:
                self.log.error(f"{gw}.webhook.success_after_failed", reference=reference)
                return

            paid = adapter.paid_amount(data)
            if not amounts_match(paid, tx.amount):
                self.log.error(
                    f"{gw}.webhook.amount_mismatch",
                    reference=reference,
                    expected_amount=to_money(tx.amount),
                    paid_amount=to_money(paid),
                )
                return

            changed = await store.transition_transaction(
                reference,
                TransactionStatus.SUCCESS,
                {"webhook": data, "webhook_processed_at": utc_now_iso()},
            )
            if not changed:
                self.log.info(f"{gw}.webhook.idempotent_success", reference=reference)
                return

            await store.confirm_booking(tx.order_id)
            await store.update_payment(reference, PaymentStatus.PAID.value, {"webhook": data})
            log_audit(db, gw, "payment.webhook_success", "transaction", reference, {"order_id": tx.order_id})
            await db.commit()
            tx = await store.get_transaction(reference)

        await self.events.publish(
            PAYMENT_SUCCESSFUL,
            PaymentEvent(transaction=tx, gateway=gw, reference=reference, gateway_response=data, webhook=True),
        )
        self.payment_log.info(f"{gw}.webhook.processed", reference=reference, status="success")

    async def _charge_failed(self, adapter: GatewayAdapter, data: dict) -> None:
        gw = adapter.gateway.value
        reference = adapter.webhook_reference(data)
        if not reference:
            self.log.error(f"{gw}.webhook.failed_missing_reference", data=data)
            return

        async with self.sessions() as db:
            store = ReconciliationStore(db)
            tx = await store.get_transaction(reference)
            if tx is not None and tx.status == TransactionStatus.SUCCESS.value:
                self.log.info(f"{gw}.webhook.failed_but_already_success", reference=reference)
                return

            if tx is not None:
                if not await store.mark_transaction_failed(
                    reference, {"webhook": data, "webhook_processed_at": utc_now_iso()}
                ):
                    # success landed in between
                    self.log.info(f"{gw}.webhook.failed_but_already_success", reference=reference)
                    return
            await store.update_payment(reference, PaymentStatus.FAILED.value, {"webhook": data})
            log_audit(db, gw, "payment.webhook_failed", "transaction", reference)
            await db.commit()

        self.payment_log.info(f"{gw}.webhook.processed", reference=reference, status="failed")


def _preview(raw_body: bytes):
    try:
        return json.loads(raw_body or b"{}")
    except ValueError:
        return {"raw": raw_body[:500].decode("utf-8", errors="replace")}
