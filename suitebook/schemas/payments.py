from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class InitializePaymentRequest(BaseModel):
    bookingId: int = Field(gt=0)
    gateway: str
    email: Optional[str] = None  # defaults to the booking's e-mail
    amount: Optional[Decimal] = None  # informational; the booking total is what gets charged


class InitializePaymentResponse(BaseModel):
    id: str
    reference: str
    transactionId: str
    amount: float
    gateway: str
    authorization_url: Optional[str] = None  # Paystack
    link: Optional[str] = None  # Flutterwave


class VerifyPaymentRequest(BaseModel):
    reference: Optional[str] = None
    tx_ref: Optional[str] = None
    trxref: Optional[str] = None
    gateway: Optional[str] = None

    def resolved_reference(self) -> str:
        return self.reference or self.tx_ref or self.trxref or ""


class PaymentSummary(BaseModel):
    id: str
    bookingId: str
    amount: float
    gateway: str
    status: str
    reference: str
    createdAt: Optional[str] = None


class PaymentConfig(BaseModel):
    paystackPublicKey: str = ""
    flutterwavePublicKey: str = ""


class ManualPaymentRequest(BaseModel):
    method: Literal["cash", "transfer"]
    amount: Optional[Decimal] = Field(default=None, gt=0)
    note: Optional[str] = Field(default=None, max_length=500)


class ManualPaymentResponse(BaseModel):
    ok: bool = True
    alreadyPaid: bool = False
    bookingReference: str
    bookingStatus: str
    paymentStatus: str
    payment: Optional[dict] = None
