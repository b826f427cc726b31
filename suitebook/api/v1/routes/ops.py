from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from suitebook.api.deps import get_payment_logs, require_ops
from suitebook.core.payment_log import PaymentLogs
from suitebook.db.session import get_db
from suitebook.models.booking import PaymentMethod
from suitebook.schemas.payments import ManualPaymentRequest, ManualPaymentResponse
from suitebook.services.manual_payment_service import record_manual_payment

router = APIRouter(tags=["ops"])


@router.post("/ops/bookings/{booking_reference}/manual-payment", response_model=ManualPaymentResponse)
async def manual_payment(
    booking_reference: str,
    body: ManualPaymentRequest,
    db: AsyncSession = Depends(get_db),
    logs: PaymentLogs = Depends(get_payment_logs),
    actor: str = Depends(require_ops),
):
    try:
        outcome = await record_manual_payment(
            db,
            logs.payments,
            booking_reference,
            PaymentMethod(body.method),
            amount=body.amount,
            note=body.note,
            actor=actor,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    b = outcome.booking
    return ManualPaymentResponse(
        alreadyPaid=outcome.already_paid,
        bookingReference=b.booking_reference,
        bookingStatus=b.status,
        paymentStatus=b.payment_status,
        payment=outcome.payment.to_dict() if outcome.payment else None,
    )
