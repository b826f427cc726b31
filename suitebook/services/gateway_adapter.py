"""Shared payment-attempt flow for hosted-checkout gateways.

Concrete adapters only describe the provider: endpoints, payload shape, how a
response reads as success and where the paid amount lives. Reference
generation, persistence, amount integrity and event publishing live here.
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

import anyio
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from suitebook.core.payment_log import PaymentLogger
from suitebook.models.booking import Booking
from suitebook.models.transaction import Transaction, TransactionGateway, TransactionStatus
from suitebook.services.audit_service import log_audit
from suitebook.services.gateway_client import HttpClient
from suitebook.services.notifications import PAYMENT_FAILED, PAYMENT_SUCCESSFUL, NotificationSink, PaymentEvent
from suitebook.services.payment_errors import (
    GATEWAY_TIMEOUT_MESSAGE,
    AmountMismatch,
    GatewayError,
    GatewayInitializationFailed,
    GatewayTimeoutError,
    TransactionNotFound,
    VerificationFailed,
)
from suitebook.services.reconciliation import ReconciliationStore, amounts_match, to_money, utc_now_iso


def epoch_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class InitializeResult:
    gateway: TransactionGateway
    reference: str
    redirect_target: str
    access_code: str | None = None

    def to_dict(self) -> dict:
        key = "authorization_url" if self.gateway == TransactionGateway.PAYSTACK else "link"
        out = {key: self.redirect_target, "reference": self.reference}
        if self.access_code:
            out["access_code"] = self.access_code
        return out


@dataclass
class VerifyResult:
    success: bool
    transaction: Transaction
    gateway_response: dict[str, Any] = field(default_factory=dict)
    pending: bool = False  # provider still processing; nothing was written


class GatewayAdapter(ABC):
    gateway: TransactionGateway
    reference_prefix: str
    initialize_path: str
    # provider statuses that end an attempt without payment
    failed_statuses: frozenset[str] = frozenset({"failed"})

    def __init__(
        self,
        *,
        http: HttpClient,
        sessions: async_sessionmaker[AsyncSession],
        events: NotificationSink,
        log: PaymentLogger,
        secret_key: str,
        public_key: str = "",
        currency: str = "NGN",
        clock: Callable[[], int] = epoch_millis,
    ):
        if not secret_key:
            raise RuntimeError(f"{self.gateway.value.upper()}_SECRET_KEY is not configured")
        self.http = http
        self.sessions = sessions
        self.events = events
        self.log = log
        self.secret_key = secret_key
        self.public_key = public_key
        self.currency = currency
        self.clock = clock
        self._reserved: set[str] = set()
        self._reference_lock = anyio.Lock()

    # provider description

    @abstractmethod
    def build_initialize_payload(self, order: Booking, email: str, reference: str, callback_base_url: str) -> dict:
        ...

    @abstractmethod
    def initialize_succeeded(self, response: dict) -> bool:
        ...

    @abstractmethod
    def build_initialize_result(self, reference: str, response: dict) -> InitializeResult:
        ...

    @abstractmethod
    def verify_path(self, reference: str) -> str:
        ...

    @abstractmethod
    def verify_call_succeeded(self, response: dict) -> bool:
        ...

    @abstractmethod
    def payment_succeeded(self, data: dict) -> bool:
        ...

    def payment_failed(self, data: dict) -> bool:
        return data.get("status") in self.failed_statuses

    @abstractmethod
    def paid_amount(self, data: dict) -> Decimal | None:
        """Amount the provider reports as charged, in major currency units."""

    @abstractmethod
    def webhook_reference(self, data: dict) -> str | None:
        ...

    @abstractmethod
    def validate_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        ...

    # shared flow

    async def _taken(self, store: ReconciliationStore, reference: str) -> bool:
        return reference in self._reserved or await store.reference_exists(reference)

    async def _reserve_reference(self, order_id: int) -> str:
        """Pick an unused reference and hold it in-process until its row is written."""
        async with self._reference_lock:
            async with self.sessions() as db:
                store = ReconciliationStore(db)
                base = f"{self.reference_prefix}-{order_id}-{self.clock()}"
                reference = base
                if await self._taken(store, reference):
                    reference = f"{base}-{self.clock()}"
                    attempt = 1
                    while await self._taken(store, reference):
                        reference = f"{base}-{self.clock()}-{attempt}"
                        attempt += 1
            self._reserved.add(reference)
        return reference

    async def initialize(
        self, order: Booking, email: str, callback_base_url: str, user_id: int | None = None
    ) -> InitializeResult:
        gw = self.gateway.value
        reference = None
        try:
            reference = await self._reserve_reference(order.id)
            try:
                payload = self.build_initialize_payload(order, email, reference, callback_base_url)
                self.log.info(f"{gw}.initialize.request", reference=reference, order_id=order.id, payload=payload)

                response = await self.http.request("POST", self.initialize_path, payload)
                if not self.initialize_succeeded(response):
                    raise GatewayInitializationFailed(
                        response.get("message") or f"{gw.capitalize()} initialization failed"
                    )

                async with self.sessions() as db:
                    store = ReconciliationStore(db)
                    try:
                        await store.create_transaction(
                            order_id=order.id,
                            user_id=user_id,
                            reference=reference,
                            gateway=gw,
                            amount=to_money(order.total_amount),
                            currency=self.currency,
                            meta={"request": payload, "response": response},
                        )
                        log_audit(db, gw, "payment.initialized", "transaction", reference, {"order_id": order.id})
                        await db.commit()
                    except IntegrityError as e:
                        # another process wrote the same reference first
                        await db.rollback()
                        raise GatewayInitializationFailed("Payment reference already in use. Please try again.") from e
            finally:
                self._reserved.discard(reference)
        except GatewayTimeoutError as e:
            self.log.error(f"{gw}.initialize.timeout", reference=reference, order_id=order.id)
            raise GatewayTimeoutError(GATEWAY_TIMEOUT_MESSAGE) from e
        except Exception as e:
            self.log.error(
                f"{gw}.initialize.error",
                reference=reference,
                order_id=order.id,
                error=str(e),
                data=e.data if isinstance(e, GatewayError) else None,
            )
            raise

        result = self.build_initialize_result(reference, response)
        self.log.info(f"{gw}.initialize.success", reference=reference, redirect_target=result.redirect_target)
        return result

    async def verify(self, reference: str, settle_pending: bool = True) -> VerifyResult:
        """Poll the provider and reconcile.

        With ``settle_pending=False`` an in-flight provider status (neither paid
        nor definitely failed) leaves the transaction pending.
        """
        gw = self.gateway.value
        self.log.info(f"{gw}.verify.request", reference=reference)
        try:
            return await self._verify(reference, settle_pending)
        except GatewayTimeoutError as e:
            self.log.error(f"{gw}.verify.timeout", reference=reference)
            raise GatewayTimeoutError(GATEWAY_TIMEOUT_MESSAGE) from e
        except Exception as e:
            self.log.error(
                f"{gw}.verify.error",
                reference=reference,
                error=str(e),
                data=e.data if isinstance(e, GatewayError) else None,
            )
            raise

    async def _verify(self, reference: str, settle_pending: bool = True) -> VerifyResult:
        gw = self.gateway.value
        response = await self.http.request("GET", self.verify_path(reference))
        if not self.verify_call_succeeded(response):
            raise VerificationFailed(response.get("message") or f"{gw.capitalize()} verification failed")
        data = response.get("data") or {}

        async with self.sessions() as db:
            store = ReconciliationStore(db)
            tx = await store.get_transaction(reference)
            if tx is None:
                raise TransactionNotFound(reference)

            if tx.status == TransactionStatus.SUCCESS.value:
                if await store.normalize_booking_card(tx.order_id):
                    await db.commit()
                self.log.info(f"{gw}.verify.already_success", reference=reference)
                return VerifyResult(True, tx, data)

            if tx.status == TransactionStatus.FAILED.value:
                self.log.info(f"{gw}.verify.already_failed", reference=reference)
                return VerifyResult(False, tx, data)

            is_success = self.payment_succeeded(data)
            if not is_success and not settle_pending and not self.payment_failed(data):
                self.log.info(f"{gw}.verify.still_pending", reference=reference, status=data.get("status"))
                return VerifyResult(False, tx, data, pending=True)
            if is_success:
                paid = self.paid_amount(data)
                if not amounts_match(paid, tx.amount):
                    self.log.error(
                        f"{gw}.verify.amount_mismatch",
                        reference=reference,
                        expected_amount=to_money(tx.amount),
                        paid_amount=to_money(paid),
                    )
                    raise AmountMismatch(reference, to_money(tx.amount), to_money(paid))

            new_status = TransactionStatus.SUCCESS if is_success else TransactionStatus.FAILED
            changed = await store.transition_transaction(
                reference, new_status, {"verification": data, "verified_at": utc_now_iso()}
            )
            if not changed:
                # another signal settled it between our read and write
                tx = await store.get_transaction(reference)
                self.log.info(f"{gw}.verify.replay", reference=reference, status=tx.status)
                return VerifyResult(tx.status == TransactionStatus.SUCCESS.value, tx, data)

            if is_success:
                await store.confirm_booking(tx.order_id)
            log_audit(db, gw, "payment.verified", "transaction", reference, {"status": new_status.value})
            await db.commit()
            tx = await store.get_transaction(reference)

        await self.events.publish(
            PAYMENT_SUCCESSFUL if is_success else PAYMENT_FAILED,
            PaymentEvent(transaction=tx, gateway=gw, reference=reference, gateway_response=data),
        )
        self.log.info(f"{gw}.verify.result", reference=reference, status=new_status.value)
        return VerifyResult(is_success, tx, data)
