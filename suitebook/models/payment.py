import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from suitebook.db.session import Base
from suitebook.models.transaction import TransactionGateway


class PaymentGateway(str, enum.Enum):
    PAYSTACK = "PAYSTACK"
    FLUTTERWAVE = "FLUTTERWAVE"
    MANUAL = "MANUAL"  # cash / transfer recorded by ops, never has a Transaction


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


def to_payment_gateway(gateway: TransactionGateway | str) -> PaymentGateway:
    """Transaction.gateway is lowercase, Payment.gateway uppercase; both name the same provider."""
    return PaymentGateway(TransactionGateway(gateway).value.upper())


class Payment(Base):
    """System-facing payment record, matched to a Transaction by reference."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="NGN")
    gateway: Mapped[str] = mapped_column(String(20))  # PAYSTACK|FLUTTERWAVE|MANUAL
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)  # PENDING|PAID|FAILED
    transaction_id: Mapped[str] = mapped_column(String(100))  # provider-correlatable, not a FK
    reference: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    payment_details: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "bookingId": str(self.booking_id),
            "amount": float(self.amount),
            "currency": self.currency,
            "gateway": self.gateway,
            "status": self.status,
            "transactionId": self.transaction_id,
            "reference": self.reference,
            "paymentDetails": self.payment_details or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
