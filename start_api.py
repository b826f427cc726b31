#!/usr/bin/env python3
"""
Run migrations (same process, same DATABASE_URL), then seed, then uvicorn.
Ensures tables exist before seed and app start.
"""
import asyncio
import os
import sys

# 1) Wait for DB
import wait_for_db  # noqa: F401

# 2) Run migrations using the same settings as the app
from suitebook.core.config import settings
from alembic.config import Config
from alembic import command

alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")


# 3) Seed using an engine created *after* migrations (avoids app engine created during Alembic env load)
async def _seed():
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from suitebook.seed import run as run_seed

    seed_engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
    try:
        async with async_sessionmaker(seed_engine, expire_on_commit=False)() as seed_db:
            await run_seed(seed_db)
    finally:
        await seed_engine.dispose()

asyncio.run(_seed())

# 4) Start uvicorn (replace current process)
os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "suitebook.main:app", "--host", "0.0.0.0", "--port", "8000"],
)
