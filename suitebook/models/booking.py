import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from suitebook.db.session import Base


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class BookingPaymentStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    CASH = "cash"
    TRANSFER = "transfer"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    suite_id: Mapped[int] = mapped_column(ForeignKey("suites.id"), index=True)
    booking_reference: Mapped[str] = mapped_column(String(60), unique=True, index=True)

    guest_name: Mapped[str] = mapped_column(String(150))
    email: Mapped[str] = mapped_column(String(200))
    phone: Mapped[str] = mapped_column(String(30), default="")
    check_in: Mapped[date] = mapped_column(Date)
    check_out: Mapped[date] = mapped_column(Date)
    number_of_guests: Mapped[int] = mapped_column(Integer, default=1)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.PENDING.value)  # PENDING|CONFIRMED|CANCELLED
    payment_status: Mapped[str] = mapped_column(String(20), default=BookingPaymentStatus.UNPAID.value)  # UNPAID|PAID
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)  # card|cash|transfer

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
