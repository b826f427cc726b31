from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from suitebook.core.config import settings
from suitebook.core.payment_log import PaymentLogger
from suitebook.models.booking import Booking, BookingPaymentStatus, PaymentMethod
from suitebook.models.payment import Payment, PaymentGateway, PaymentStatus
from suitebook.services.audit_service import log_audit
from suitebook.services.gateway_adapter import epoch_millis
from suitebook.services.reconciliation import ReconciliationStore, to_money


@dataclass
class ManualPaymentOutcome:
    payment: Payment | None
    booking: Booking
    already_paid: bool


async def record_manual_payment(
    db: AsyncSession,
    log: PaymentLogger,
    booking_reference: str,
    method: PaymentMethod,
    amount: Decimal | None = None,
    note: str | None = None,
    actor: str = "ops",
) -> ManualPaymentOutcome:
    """Record a cash or bank-transfer payment taken at the desk.

    Raises LookupError for an unknown booking and ValueError for a card method.
    """
    if method == PaymentMethod.CARD:
        raise ValueError("Card payments must go through a gateway")

    booking = await db.scalar(select(Booking).where(Booking.booking_reference == booking_reference))
    if not booking:
        raise LookupError("Booking not found")

    if booking.payment_status == BookingPaymentStatus.PAID.value:
        existing = await db.scalar(
            select(Payment).where(Payment.booking_id == booking.id).order_by(Payment.created_at.desc())
        )
        log.info("payment.manual.already_paid", booking_reference=booking_reference)
        return ManualPaymentOutcome(payment=existing, booking=booking, already_paid=True)

    expected = to_money(booking.total_amount)
    received = to_money(amount) if amount is not None else expected
    if received != expected:
        log.error(
            "payment.manual.amount_mismatch",
            booking_reference=booking_reference,
            expected_amount=expected,
            received_amount=received,
        )

    store = ReconciliationStore(db)
    reference = f"MAN-{booking.id}-{epoch_millis()}"
    payment = await store.create_payment(
        booking_id=booking.id,
        amount=received,
        currency=settings.PAYMENT_CURRENCY,
        gateway=PaymentGateway.MANUAL.value,
        status=PaymentStatus.PAID.value,
        reference=reference,
        transaction_id=f"{method.value.upper()}-{epoch_millis()}",
        details={"manual": {"method": method.value, "note": note or "", "recorded_by": actor}},
    )
    await store.confirm_booking(booking.id, method=method)
    log_audit(db, actor, "payment.manual_recorded", "booking", booking_reference, {
        "reference": reference, "method": method.value, "amount": str(received),
    })
    await db.commit()
    log.info("payment.manual.recorded", booking_reference=booking_reference, reference=reference, method=method.value)
    return ManualPaymentOutcome(payment=payment, booking=booking, already_paid=False)
