from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from suitebook.core.config import settings
from suitebook.core.payment_log import PaymentLogger
from suitebook.models.booking import Booking
from suitebook.models.suite import Suite
from suitebook.services.email_service import queue_email
from suitebook.services.notifications import PAYMENT_SUCCESSFUL, NotificationSink, PaymentEvent


def format_naira(amount) -> str:
    return f"₦{float(amount):,.2f}"


def build_payment_receipt(sessions: async_sessionmaker[AsyncSession], log: PaymentLogger):
    async def send_payment_receipt(event: PaymentEvent) -> None:
        reference = event.reference
        try:
            async with sessions() as db:
                booking = await db.get(Booking, event.transaction.order_id)
                suite = await db.get(Suite, booking.suite_id) if booking else None
                if booking is None or suite is None:
                    return
                amount = format_naira(event.transaction.amount)

                await queue_email(
                    db,
                    booking.email,
                    f"Payment received for {suite.name}",
                    f"Hi {booking.guest_name},\n\n"
                    f"We have successfully received your payment.\n\n"
                    f"Reference: {reference}\n"
                    f"Suite: {suite.name}\n"
                    f"Amount: {amount}\n\n"
                    f"Thank you for choosing {settings.HOTEL_NAME}.",
                    related_reference=reference,
                )
                await queue_email(
                    db,
                    settings.ADMIN_EMAIL or settings.SMTP_FROM,
                    f"Payment confirmed: {suite.name} ({reference})",
                    f"Guest: {booking.guest_name} <{booking.email}>\n"
                    f"Suite: {suite.name}\n"
                    f"Amount: {amount}\n"
                    f"Reference: {reference}",
                    related_reference=reference,
                )
            log.info("payment.email.sent", reference=reference, gateway=event.gateway, booking_id=booking.id)
        except Exception as e:
            log.error("payment.email.failed", reference=reference, error=str(e))

    return send_payment_receipt


def register_payment_listeners(
    events: NotificationSink, sessions: async_sessionmaker[AsyncSession], log: PaymentLogger
) -> None:
    events.subscribe(PAYMENT_SUCCESSFUL, build_payment_receipt(sessions, log))
