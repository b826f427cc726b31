import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from suitebook.core.config import settings
from suitebook.core.payment_log import PaymentLogs
from suitebook.services.payment_dispatcher import PaymentDispatcher
from suitebook.services.webhook_service import WebhookService

bearer = HTTPBearer(auto_error=False)


def get_dispatcher(request: Request) -> PaymentDispatcher:
    return request.app.state.dispatcher


def get_webhook_service(request: Request) -> WebhookService:
    return request.app.state.webhooks


def get_payment_logs(request: Request) -> PaymentLogs:
    return request.app.state.payment_logs


def require_ops(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> str:
    """Static bearer token for back-office endpoints. Returns the actor name for audit rows."""
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    expected = settings.OPS_API_TOKEN
    if not expected or not hmac.compare_digest(creds.credentials.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid token")
    return "ops"
