import asyncio
import os
import time

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from suitebook.core.config import settings

DATABASE_URL = settings.DATABASE_URL or os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise SystemExit("DATABASE_URL is not set")

timeout_s = int(os.getenv("DB_WAIT_TIMEOUT", "60"))


async def _ping() -> None:
    engine = create_async_engine(DATABASE_URL, poolclass=NullPool)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    finally:
        await engine.dispose()


def wait() -> None:
    start = time.time()
    last_err = None
    target = DATABASE_URL.split("@")[-1]
    print(f"[wait_for_db] Waiting for database at {target} (timeout={timeout_s}s)")
    while True:
        try:
            asyncio.run(_ping())
            print("[wait_for_db] Database is ready.")
            return
        except Exception as e:
            last_err = e
            if time.time() - start > timeout_s:
                print(f"[wait_for_db] Timed out waiting for DB. Last error: {last_err}")
                raise
            time.sleep(1)


wait()
