from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from suitebook.api.deps import get_dispatcher, get_payment_logs, require_ops
from suitebook.core.config import settings
from suitebook.core.payment_log import PaymentLogs
from suitebook.db.session import get_db
from suitebook.models.booking import Booking
from suitebook.models.payment import Payment, PaymentStatus, to_payment_gateway
from suitebook.models.transaction import TransactionGateway
from suitebook.schemas.payments import (
    InitializePaymentRequest,
    InitializePaymentResponse,
    PaymentConfig,
    PaymentSummary,
    VerifyPaymentRequest,
)
from suitebook.services.gateway_adapter import VerifyResult, epoch_millis
from suitebook.services.payment_dispatcher import PaymentDispatcher, normalize_gateway, resolve_gateway
from suitebook.services.payment_errors import PaymentError, UnsupportedGateway
from suitebook.services.reconciliation import ReconciliationStore, to_money

router = APIRouter(tags=["payments"])
# browser-facing callback target, mounted at the site root
redirect_router = APIRouter(tags=["payments"])


def _callback_base_url(request: Request) -> str:
    proto = request.headers.get("x-forwarded-proto", request.url.scheme).split(",")[0].strip()
    host = request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


async def _sync_payment(
    db: AsyncSession, reference: str, gateway: TransactionGateway, result: VerifyResult
) -> Payment | None:
    payment = await ReconciliationStore(db).record_verification(
        reference, result.success, result.gateway_response, gateway=to_payment_gateway(gateway).value
    )
    await db.commit()
    return payment


@router.post("/payments/initialize", status_code=201, response_model=InitializePaymentResponse)
async def initialize_payment(
    body: InitializePaymentRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    dispatcher: PaymentDispatcher = Depends(get_dispatcher),
    logs: PaymentLogs = Depends(get_payment_logs),
):
    log = logs.payments
    try:
        gateway = normalize_gateway(body.gateway)
    except UnsupportedGateway:
        raise HTTPException(status_code=400, detail="Unsupported payment gateway")

    booking = await db.get(Booking, body.bookingId)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    email = body.email or booking.email
    if not email:
        raise HTTPException(status_code=400, detail="Customer email is required")

    total = to_money(booking.total_amount)
    if body.amount is not None and to_money(body.amount) != total:
        log.error(
            "payment.amount.mismatch",
            booking_id=booking.id,
            expected_amount=total,
            provided_amount=to_money(body.amount),
        )

    log.info("payment.initialize.start", booking_id=booking.id, gateway=gateway.value, email=email)
    try:
        result = await dispatcher.initiate(booking, gateway.value, email, _callback_base_url(request))
    except PaymentError as e:
        log.error("payment.initialize.error", booking_id=booking.id, error=str(e))
        raise HTTPException(status_code=e.status_code, detail=str(e))

    payment_gateway = to_payment_gateway(gateway)
    payment = await ReconciliationStore(db).create_payment(
        booking_id=booking.id,
        amount=total,
        currency=settings.PAYMENT_CURRENCY,
        gateway=payment_gateway.value,
        status=PaymentStatus.PENDING.value,
        reference=result.reference,
        transaction_id=f"{payment_gateway.value}-{epoch_millis()}",
        details={"initialization": result.to_dict()},
    )
    await db.commit()
    log.info("payment.initialize.success", booking_id=booking.id, gateway=gateway.value, reference=result.reference)

    initialization = result.to_dict()
    return InitializePaymentResponse(
        id=str(payment.id),
        reference=result.reference,
        transactionId=payment.transaction_id,
        amount=float(payment.amount),
        gateway=payment.gateway,
        authorization_url=initialization.get("authorization_url"),
        link=initialization.get("link"),
    )


@router.post("/payments/verify", response_model=PaymentSummary)
async def verify_payment(
    body: VerifyPaymentRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: PaymentDispatcher = Depends(get_dispatcher),
    logs: PaymentLogs = Depends(get_payment_logs),
):
    reference = body.resolved_reference()
    if not reference:
        raise HTTPException(status_code=400, detail="Reference is required")
    try:
        gateway = resolve_gateway(body.gateway, reference)
    except UnsupportedGateway:
        raise HTTPException(status_code=400, detail="Unsupported payment gateway")

    try:
        result = await dispatcher.verify(reference, gateway.value)
    except PaymentError as e:
        logs.payments.error("payment.verify.error", reference=reference, error=str(e))
        raise HTTPException(status_code=e.status_code, detail=str(e))

    payment = await _sync_payment(db, reference, gateway, result)
    if payment is None:
        return PaymentSummary(
            id="",
            bookingId="",
            amount=0,
            gateway=to_payment_gateway(gateway).value,
            status=PaymentStatus.PAID.value if result.success else PaymentStatus.FAILED.value,
            reference=reference,
        )
    return PaymentSummary(
        id=str(payment.id),
        bookingId=str(payment.booking_id),
        amount=float(payment.amount),
        gateway=payment.gateway,
        status=payment.status,
        reference=reference,
        createdAt=payment.created_at.isoformat() if payment.created_at else None,
    )


@redirect_router.get("/verify-payment")
async def verify_payment_redirect(
    reference: str = "",
    tx_ref: str = "",
    trxref: str = "",
    gateway: str = "",
    db: AsyncSession = Depends(get_db),
    dispatcher: PaymentDispatcher = Depends(get_dispatcher),
    logs: PaymentLogs = Depends(get_payment_logs),
):
    reference = reference or tx_ref or trxref
    if not reference:
        raise HTTPException(status_code=400, detail="Reference is required")

    frontend = settings.PUBLIC_CLIENT_URL.rstrip("/")
    try:
        resolved = resolve_gateway(gateway, reference)
    except UnsupportedGateway:
        return RedirectResponse(f"{frontend}/order/failed?{urlencode({'ref': reference})}", status_code=302)

    query = urlencode({"ref": reference, "gateway": resolved.value})
    try:
        result = await dispatcher.verify(reference, resolved.value)
        await _sync_payment(db, reference, resolved, result)
    except PaymentError as e:
        logs.payments.error("payment.verify.redirect_error", reference=reference, error=str(e))
        return RedirectResponse(f"{frontend}/order/failed?{query}", status_code=302)

    path = "order/success" if result.success else "order/failed"
    return RedirectResponse(f"{frontend}/{path}?{query}", status_code=302)


@router.get("/payments/config", response_model=PaymentConfig)
async def payment_config(dispatcher: PaymentDispatcher = Depends(get_dispatcher)):
    keys = dispatcher.public_keys()
    return PaymentConfig(
        paystackPublicKey=keys.get(TransactionGateway.PAYSTACK.value, ""),
        flutterwavePublicKey=keys.get(TransactionGateway.FLUTTERWAVE.value, ""),
    )


@router.get("/payments/transactions/{reference}")
async def transaction_by_reference(
    reference: str,
    fresh: bool = False,
    db: AsyncSession = Depends(get_db),
    dispatcher: PaymentDispatcher = Depends(get_dispatcher),
    logs: PaymentLogs = Depends(get_payment_logs),
):
    store = ReconciliationStore(db)
    tx = await store.get_transaction(reference)
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found")

    gateway_status = None
    if fresh:
        try:
            result = await dispatcher.verify(reference, tx.gateway)
            gateway_status = result.gateway_response
        except PaymentError as e:
            logs.payments.error("transaction.lookup.fresh_failed", reference=reference, error=str(e))
        tx = await store.get_transaction(reference)

    booking = await db.get(Booking, tx.order_id)
    payment = await store.get_payment(reference)
    return {
        "success": True,
        "data": {
            "transaction": tx.to_dict(),
            "booking": {
                "id": booking.id,
                "bookingReference": booking.booking_reference,
                "status": booking.status,
                "paymentStatus": booking.payment_status,
                "paymentMethod": booking.payment_method,
            } if booking else None,
            "payment": payment.to_dict() if payment else None,
            "gateway_fresh_status": gateway_status,
        },
    }


@router.get("/admin/payments")
async def admin_payments(db: AsyncSession = Depends(get_db), _actor: str = Depends(require_ops)):
    payments = (await db.scalars(select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()))).all()
    return [p.to_dict() for p in payments]
