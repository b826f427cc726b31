"""Row-level state for payment reconciliation.

All mutations of transactions, payments and the booking payment fields go
through ``ReconciliationStore``. Callers own the unit of work: the store never
commits.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from suitebook.models.booking import Booking, BookingPaymentStatus, BookingStatus, PaymentMethod
from suitebook.models.payment import Payment, PaymentStatus
from suitebook.models.transaction import Transaction, TransactionStatus

CENT = Decimal("0.01")


def to_money(value) -> Decimal | None:
    """2dp Decimal, or None when the value is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except ArithmeticError:
        return None


def amounts_match(paid, expected) -> bool:
    paid_money = to_money(paid)
    return paid_money is not None and paid_money == to_money(expected)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _merged(current: dict | None, patch: dict) -> dict:
    return {**(current or {}), **patch}


class ReconciliationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # transactions

    async def reference_exists(self, reference: str) -> bool:
        found = await self.db.scalar(select(Transaction.id).where(Transaction.reference == reference))
        return found is not None

    async def create_transaction(
        self,
        *,
        order_id: int,
        reference: str,
        gateway: str,
        amount: Decimal,
        currency: str,
        meta: dict,
        user_id: int | None = None,
    ) -> Transaction:
        tx = Transaction(
            order_id=order_id,
            user_id=user_id,
            reference=reference,
            gateway=gateway,
            amount=to_money(amount),
            currency=currency,
            status=TransactionStatus.PENDING.value,
            meta=meta,
        )
        self.db.add(tx)
        await self.db.flush()
        return tx

    async def get_transaction(self, reference: str) -> Transaction | None:
        stmt = select(Transaction).where(Transaction.reference == reference).execution_options(populate_existing=True)
        return await self.db.scalar(stmt)

    async def list_stale_pending(self, older_than: datetime, limit: int) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.status == TransactionStatus.PENDING.value, Transaction.created_at < older_than)
            .order_by(Transaction.created_at.asc())
            .limit(limit)
        )
        return list((await self.db.scalars(stmt)).all())

    async def transition_transaction(self, reference: str, status: TransactionStatus, metadata_patch: dict) -> bool:
        """Move a pending transaction to ``status``.

        Returns False when another writer got there first (the row is no longer
        pending); the caller then treats the signal as a replay.
        """
        current = await self.get_transaction(reference)
        if current is None or current.status != TransactionStatus.PENDING.value:
            return False
        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.reference == reference, Transaction.status == TransactionStatus.PENDING.value)
            .values(
                {
                    Transaction.status: status.value,
                    Transaction.meta: _merged(current.meta, metadata_patch),
                    Transaction.updated_at: datetime.now(timezone.utc),
                }
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_transaction_failed(self, reference: str, metadata_patch: dict) -> bool:
        """Failure signals never downgrade a successful transaction."""
        current = await self.get_transaction(reference)
        if current is None or current.status == TransactionStatus.SUCCESS.value:
            return False
        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.reference == reference, Transaction.status != TransactionStatus.SUCCESS.value)
            .values(
                {
                    Transaction.status: TransactionStatus.FAILED.value,
                    Transaction.meta: _merged(current.meta, metadata_patch),
                    Transaction.updated_at: datetime.now(timezone.utc),
                }
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # bookings

    async def confirm_booking(self, order_id: int, method: PaymentMethod = PaymentMethod.CARD) -> Booking | None:
        booking = await self.db.get(Booking, order_id)
        if booking is None:
            return None
        booking.status = BookingStatus.CONFIRMED.value
        booking.payment_status = BookingPaymentStatus.PAID.value
        booking.payment_method = method.value
        await self.db.flush()
        return booking

    async def normalize_booking_card(self, order_id: int) -> bool:
        """Repair a booking whose transaction succeeded but still shows a non-card method."""
        booking = await self.db.get(Booking, order_id)
        if booking is None or booking.payment_method == PaymentMethod.CARD.value:
            return False
        await self.confirm_booking(order_id)
        return True

    # payments

    async def create_payment(
        self,
        *,
        booking_id: int,
        amount: Decimal,
        currency: str,
        gateway: str,
        status: str,
        reference: str,
        transaction_id: str,
        details: dict,
    ) -> Payment:
        payment = Payment(
            booking_id=booking_id,
            amount=to_money(amount),
            currency=currency,
            gateway=gateway,
            status=status,
            reference=reference,
            transaction_id=transaction_id,
            payment_details=details,
        )
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def get_payment(self, reference: str) -> Payment | None:
        stmt = select(Payment).where(Payment.reference == reference).execution_options(populate_existing=True)
        return await self.db.scalar(stmt)

    async def update_payment(
        self, reference: str, status: str, details_patch: dict, gateway: str | None = None
    ) -> Payment | None:
        payment = await self.get_payment(reference)
        if payment is None:
            return None
        payment.status = status
        if gateway:
            payment.gateway = gateway
        payment.payment_details = _merged(payment.payment_details, details_patch)
        await self.db.flush()
        return payment

    async def record_verification(
        self, reference: str, success: bool, gateway_response: dict, gateway: str | None = None
    ) -> Payment | None:
        """Mirror a verify outcome onto the payment row, if there is one."""
        return await self.update_payment(
            reference,
            PaymentStatus.PAID.value if success else PaymentStatus.FAILED.value,
            {"verification": gateway_response},
            gateway=gateway,
        )
