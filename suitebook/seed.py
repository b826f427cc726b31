"""Local demo data: one suite and one unpaid booking to run a checkout against."""
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from suitebook.core.config import settings
from suitebook.models.booking import Booking
from suitebook.models.suite import Suite

DEMO_BOOKING_REFERENCE = "BK-DEMO-0001"


async def ensure_suite(db: AsyncSession, name: str, type_: str) -> Suite:
    suite = await db.scalar(select(Suite).where(Suite.name == name))
    if suite:
        return suite
    suite = Suite(name=name, type=type_)
    db.add(suite)
    await db.flush()
    return suite


async def run(db: AsyncSession) -> bool:
    """Returns False when tables are missing or the environment is not local."""
    if settings.ENV != "local":
        return False
    # If migrations haven't been applied yet, seeding must not crash the API.
    try:
        await db.execute(select(Suite.id).limit(1))
    except (ProgrammingError, OperationalError):
        await db.rollback()
        print("[seed] suites table not found yet. Skipping seeding (run alembic upgrade head).")
        return False

    suite = await ensure_suite(db, "Executive Suite", "executive")
    exists = await db.scalar(select(Booking.id).where(Booking.booking_reference == DEMO_BOOKING_REFERENCE))
    if not exists:
        check_in = date.today() + timedelta(days=7)
        db.add(Booking(
            suite_id=suite.id,
            booking_reference=DEMO_BOOKING_REFERENCE,
            guest_name="Demo Guest",
            email="guest@example.com",
            phone="08012345678",
            check_in=check_in,
            check_out=check_in + timedelta(days=2),
            number_of_guests=2,
            total_amount=Decimal("25000.00"),
        ))
    await db.commit()
    return True
