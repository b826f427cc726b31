import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from suitebook.core.config import settings
from suitebook.api.v1.api import api_router
from suitebook.api.v1.routes.payments import redirect_router
from suitebook.api.v1.routes.webhooks import router as webhooks_router
from suitebook.db.session import SessionLocal
from suitebook.services.payment_services import PaymentServices, build_payment_services

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def install_payment_services(app: FastAPI, services: PaymentServices) -> None:
    app.state.payment_services = services
    app.state.payment_logs = services.logs
    app.state.dispatcher = services.dispatcher
    app.state.webhooks = services.webhooks


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.require_gateway_secrets()
    services = build_payment_services(settings, SessionLocal)
    install_payment_services(app, services)
    try:
        yield
    finally:
        services.close()


def create_app(with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan if with_lifespan else None)

    # CORS: use CORS_ORIGINS from env in production; default to the storefront in dev
    _default_origins = [settings.PUBLIC_CLIENT_URL, "http://127.0.0.1:3039"]
    _origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    app.include_router(redirect_router)
    app.include_router(webhooks_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
