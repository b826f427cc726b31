import asyncio
import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from suitebook.core.config import Settings, settings
from suitebook.models.payment import to_payment_gateway
from suitebook.services.email_service import process_pending_emails
from suitebook.services.payment_errors import PaymentError
from suitebook.services.payment_services import build_payment_services
from suitebook.services.reconciliation import ReconciliationStore

logger = logging.getLogger(__name__)


def _sessions(cfg: Settings):
    # each Celery run gets its own event loop, so pooled connections cannot be reused
    engine = create_async_engine(cfg.DATABASE_URL, poolclass=NullPool)
    return engine, async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def process_email_queue_async(sessions: async_sessionmaker[AsyncSession], limit: int = 50) -> dict:
    async with sessions() as db:
        try:
            return await process_pending_emails(db, limit=limit)
        except (ProgrammingError, OperationalError):
            # DB not migrated yet; don't crash the worker.
            await db.rollback()
            return {"skipped": True, "reason": "missing_tables"}


async def reconcile_pending_async(
    sessions: async_sessionmaker[AsyncSession], cfg: Settings, limit: int = 100, services=None
) -> dict:
    """Re-verify transactions nobody has confirmed yet (customer closed the tab, webhook lost)."""
    own_services = services is None
    services = services or build_payment_services(cfg, sessions)
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=cfg.RECONCILE_PENDING_AFTER_MINUTES)
        async with sessions() as db:
            try:
                stale = await ReconciliationStore(db).list_stale_pending(cutoff, limit)
            except (ProgrammingError, OperationalError):
                await db.rollback()
                return {"skipped": True, "reason": "missing_tables"}

        succeeded, failed, pending, errors = 0, 0, 0, 0
        for tx in stale:
            try:
                # in-flight provider statuses stay pending
                result = await services.dispatcher.verify(tx.reference, tx.gateway, settle_pending=False)
            except PaymentError as e:
                errors += 1
                logger.warning("reconcile %s failed: %s", tx.reference, e)
                continue
            if result.pending:
                pending += 1
                continue
            async with sessions() as db:
                await ReconciliationStore(db).record_verification(
                    tx.reference, result.success, result.gateway_response, gateway=to_payment_gateway(tx.gateway).value
                )
                await db.commit()
            if result.success:
                succeeded += 1
            else:
                failed += 1
        return {"checked": len(stale), "success": succeeded, "failed": failed, "pending": pending, "errors": errors}
    finally:
        if own_services:
            services.close()


def process_email_queue(limit: int = 50) -> dict:
    """Process queued/failed emails (retry send). Run periodically via Celery beat."""
    async def _run():
        engine, sessions = _sessions(settings)
        try:
            return await process_email_queue_async(sessions, limit=limit)
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def reconcile_pending_transactions(limit: int = 100) -> dict:
    async def _run():
        engine, sessions = _sessions(settings)
        try:
            return await reconcile_pending_async(sessions, settings, limit=limit)
        finally:
            await engine.dispose()

    return asyncio.run(_run())
