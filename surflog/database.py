import asyncio
import logging
import os
from collections.abc import AsyncIterator

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import EntryRecord

_logger = logging.getLogger(__name__)

DB_CONNECT_RETRIES = max(1, int(os.getenv("DB_CONNECT_RETRIES", "10")))
DB_CONNECT_DELAY = float(os.getenv("DB_CONNECT_DELAY", "2"))


def build_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("POSTGRES_HOST", "postgres")
    db = os.getenv("POSTGRES_DB", "surflog")
    user = os.getenv("POSTGRES_USER", "surflog")
    password = os.getenv("POSTGRES_PASSWORD", "")
    return f"postgresql://{user}:{password}@{host}:5432/{db}"


def to_async_url(url: str) -> str:
    if url.startswith("postgresql+asyncpg://"):
        return url
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = to_async_url(build_database_url())

engine = create_async_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def _has_entries_table(conn: AsyncConnection) -> bool:
    return await conn.run_sync(
        lambda sync_conn: inspect(sync_conn).has_table(EntryRecord.__tablename__)
    )


async def startup_db() -> None:
    """Wait for the database, then make sure the entries table has been migrated."""
    last_error: Exception | None = None
    for attempt in range(1, DB_CONNECT_RETRIES + 1):
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                has_table = await _has_entries_table(conn)
            break
        except Exception as exc:
            last_error = exc
            if attempt == DB_CONNECT_RETRIES:
                raise RuntimeError("Database connection failed") from last_error
            _logger.warning(
                "Database connection attempt %s/%s failed; retrying in %ss",
                attempt,
                DB_CONNECT_RETRIES,
                DB_CONNECT_DELAY,
            )
            await asyncio.sleep(DB_CONNECT_DELAY)
    if not has_table:
        raise RuntimeError(
            f"Table {EntryRecord.__tablename__!r} is missing; run `alembic upgrade head`"
        )
    _logger.info("Database ready")


async def shutdown_db() -> None:
    await engine.dispose()


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
