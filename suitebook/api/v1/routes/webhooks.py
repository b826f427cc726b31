from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from suitebook.api.deps import get_webhook_service
from suitebook.services.webhook_service import WebhookService

router = APIRouter(tags=["webhooks"])


@router.post("/webhook/paystack")
async def paystack_webhook(req: Request, webhooks: WebhookService = Depends(get_webhook_service)):
    # signature covers the exact bytes received, so read the raw body
    body = await req.body()
    status, content = await webhooks.handle_paystack(body, req.headers.get("x-paystack-signature"))
    return JSONResponse(status_code=status, content=content)


@router.post("/webhook/flutterwave")
async def flutterwave_webhook(req: Request, webhooks: WebhookService = Depends(get_webhook_service)):
    body = await req.body()
    status, content = await webhooks.handle_flutterwave(body, req.headers.get("verif-hash"))
    return JSONResponse(status_code=status, content=content)
