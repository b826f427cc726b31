"""Shared fixtures: a throwaway SQLite database per test, fake gateways over
httpx.MockTransport, and the ASGI app wired to both.

AnyIO is the async runner (``@pytest.mark.anyio``).
"""
import os
import tempfile

# settings are read at import time; keep the process-wide defaults test-safe
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_LOG_DIR", tempfile.mkdtemp(prefix="suitebook-logs-"))
os.environ.setdefault("OPS_API_TOKEN", "ops-test-token")

import hashlib
import hmac
import json
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from suitebook.core.config import Settings
from suitebook.db.session import Base, get_db
from suitebook.models.audit_log import AuditLog  # noqa: F401
from suitebook.models.booking import Booking
from suitebook.models.email_log import EmailLog  # noqa: F401
from suitebook.models.payment import Payment  # noqa: F401
from suitebook.models.suite import Suite
from suitebook.models.transaction import Transaction  # noqa: F401
from suitebook.services import email_service
from suitebook.services.notifications import PAYMENT_FAILED, PAYMENT_SUCCESSFUL
from suitebook.services.payment_services import build_payment_services

PAYSTACK_SECRET = "sk_test_paystack"
FLUTTERWAVE_SECRET = "FLWSECK_TEST-secret"
FLUTTERWAVE_HASH = "flw-webhook-hash"
OPS_TOKEN = "ops-test-token"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeGateway:
    """Routes (method, path) to canned JSON responses and records every request."""

    def __init__(self):
        self.routes: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []

    def reply(self, method: str, path: str, json_body=None, status: int = 200, text: str | None = None):
        self.routes[(method, path)] = (status, json_body, text)

    def fail(self, method: str, path: str, exc: Exception):
        self.routes[(method, path)] = exc

    def respond_with(self, method: str, path: str, responder):
        self.routes[(method, path)] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = None
        if request.url.query:
            route = self.routes.get((request.method, f"{request.url.path}?{request.url.query.decode()}"))
        if route is None:
            route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"status": False, "message": f"no route {request.url.path}"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        status, body, text = route
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=body)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


class EventRecorder:
    def __init__(self):
        self.events: list[tuple[str, object]] = []

    def on(self, name):
        async def _handler(event):
            self.events.append((name, event))

        return _handler

    def named(self, name) -> list:
        return [e for n, e in self.events if n == name]


def paystack_signature(body: bytes, secret: str = PAYSTACK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


@pytest.fixture
def cfg(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/suitebook-test.db",
        PAYMENT_LOG_DIR=str(tmp_path / "logs"),
        PAYSTACK_SECRET_KEY=PAYSTACK_SECRET,
        PAYSTACK_PUBLIC_KEY="pk_test_paystack",
        FLUTTERWAVE_SECRET_KEY=FLUTTERWAVE_SECRET,
        FLUTTERWAVE_PUBLIC_KEY="FLWPUBK_TEST-public",
        FLUTTERWAVE_WEBHOOK_HASH=FLUTTERWAVE_HASH,
        OPS_API_TOKEN=OPS_TOKEN,
    )


@pytest.fixture
async def sessions(cfg) -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(cfg.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch) -> list:
    sent = []

    async def _fake_send(to_email, subject, body):
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def services(cfg, sessions, gateway):
    svc = build_payment_services(cfg, sessions, transport=httpx.MockTransport(gateway.handler))
    yield svc
    svc.close()


@pytest.fixture
def recorder(services) -> EventRecorder:
    rec = EventRecorder()
    services.events.subscribe(PAYMENT_SUCCESSFUL, rec.on(PAYMENT_SUCCESSFUL))
    services.events.subscribe(PAYMENT_FAILED, rec.on(PAYMENT_FAILED))
    return rec


@pytest.fixture
async def booking(sessions) -> Booking:
    async with sessions() as db:
        suite = Suite(name="Royal Suite", type="royal")
        db.add(suite)
        await db.flush()
        b = Booking(
            suite_id=suite.id,
            booking_reference="BK-1001",
            guest_name="Guest One",
            email="guest@example.com",
            phone="08012345678",
            check_in=date(2026, 11, 1),
            check_out=date(2026, 11, 3),
            number_of_guests=2,
            total_amount=Decimal("25000.00"),
        )
        db.add(b)
        await db.commit()
        return b


@pytest.fixture
async def client(services, sessions) -> AsyncGenerator[httpx.AsyncClient, None]:
    from suitebook.main import create_app, install_payment_services

    app = create_app(with_lifespan=False)
    install_payment_services(app, services)

    async def _get_db():
        async with sessions() as db:
            yield db

    app.dependency_overrides[get_db] = _get_db
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def paystack_init_ok(gateway: FakeGateway):
    gateway.reply(
        "POST",
        "/transaction/initialize",
        {
            "status": True,
            "message": "Authorization URL created",
            "data": {
                "authorization_url": "https://checkout.paystack.com/abc123",
                "access_code": "abc123",
                "reference": "ignored",
            },
        },
    )


def paystack_verify(gateway: FakeGateway, reference: str, status: str = "success", amount: int = 2500000):
    gateway.reply(
        "GET",
        f"/transaction/verify/{reference}",
        {"status": True, "message": "Verification successful", "data": {"status": status, "amount": amount, "reference": reference}},
    )


def flutterwave_init_ok(gateway: FakeGateway):
    gateway.reply(
        "POST",
        "/v3/payments",
        {"status": "success", "message": "Hosted Link", "data": {"link": "https://checkout.flutterwave.com/pay/xyz"}},
    )


def flutterwave_verify(gateway: FakeGateway, reference: str, status: str = "successful", amount=25000):
    gateway.reply(
        "GET",
        f"/v3/transactions/verify_by_reference?tx_ref={reference}",
        {"status": "success", "message": "Transaction fetched", "data": {"status": status, "amount": amount, "tx_ref": reference}},
    )
