"""Append-only structured payment/webhook logs.

Each channel is a JSON-lines file under ``PAYMENT_LOG_DIR``. Context is masked
before it is rendered: secrets and card data are redacted, e-mails and phone
numbers are partially hidden.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TextIO

import structlog

logger = logging.getLogger(__name__)

REDACT_KEYS = (
    "authorization",
    "card",
    "cvv",
    "secret",
    "token",
    "signature",
    "hash",
    "key",
    "password",
    "pin",
)
MAX_DEPTH = 6
_RESERVED = ("timestamp", "level", "message")


def mask_email(email: str) -> str:
    user, _, domain = email.partition("@")
    if not domain:
        return "***"
    masked_user = f"{user[:1]}*" if len(user) <= 2 else f"{user[:2]}***"
    return f"{masked_user}@{domain}"


def mask_value(value: str) -> str:
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def mask_sensitive(value: Any, depth: int = 0) -> Any:
    if depth > MAX_DEPTH:
        return "[Truncated]"
    if isinstance(value, (list, tuple)):
        return [mask_sensitive(item, depth + 1) for item in value]
    if isinstance(value, dict):
        masked = {}
        for key, item in value.items():
            lowered = str(key).lower()
            if any(needle in lowered for needle in REDACT_KEYS):
                masked[key] = "[REDACTED]"
            elif "email" in lowered and isinstance(item, str):
                masked[key] = mask_email(item)
            elif "phone" in lowered and isinstance(item, str):
                masked[key] = mask_value(item)
            else:
                masked[key] = mask_sensitive(item, depth + 1)
        return masked
    return value


def _nest_context(_, __, event_dict: dict) -> dict:
    context = {k: event_dict.pop(k) for k in list(event_dict) if k not in _RESERVED}
    event_dict["context"] = mask_sensitive(context)
    return event_dict


class PaymentLogger(Protocol):
    def info(self, message: str, **context: Any) -> None: ...

    def error(self, message: str, **context: Any) -> None: ...


class StructlogPaymentLogger:
    """One JSON line per event: ``{"timestamp", "level", "message", "context"}``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file: TextIO = self.path.open("a", encoding="utf-8")
        self._log = structlog.wrap_logger(
            structlog.WriteLogger(self._file),
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.EventRenamer("message"),
                _nest_context,
                structlog.processors.JSONRenderer(default=str, sort_keys=False),
            ],
        )

    def info(self, message: str, **context: Any) -> None:
        self._write("info", message, context)

    def error(self, message: str, **context: Any) -> None:
        self._write("error", message, context)

    def _write(self, level: str, message: str, context: dict) -> None:
        try:
            getattr(self._log, level)(message, **context)
        except Exception:
            # a broken log file must never break a payment flow
            logger.exception("payment log write failed: %s", message)

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


@dataclass
class PaymentLogs:
    payments: PaymentLogger
    webhooks: PaymentLogger

    def close(self) -> None:
        for channel in (self.payments, self.webhooks):
            close = getattr(channel, "close", None)
            if close:
                close()


def open_payment_logs(log_dir: str | Path) -> PaymentLogs:
    log_dir = Path(log_dir)
    return PaymentLogs(
        payments=StructlogPaymentLogger(log_dir / "payments.log"),
        webhooks=StructlogPaymentLogger(log_dir / "webhooks.log"),
    )
