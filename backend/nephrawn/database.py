import asyncio
import logging

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nephrawn.config import settings
from nephrawn.models import Base

logger = logging.getLogger("nephrawn.database")

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_timeout=30,
    pool_recycle=settings.database_pool_recycle,
    pool_pre_ping=settings.database_pool_pre_ping,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


def _missing_tables(sync_conn) -> list[str]:
    present = set(inspect(sync_conn).get_table_names())
    return sorted(name for name in Base.metadata.tables if name not in present)


async def _prepare_schema(conn) -> None:
    if settings.debug:
        await conn.run_sync(Base.metadata.create_all)
        return
    missing = await conn.run_sync(_missing_tables)
    if missing:
        logger.warning(
            "Tables missing: %s. Run `alembic upgrade head`.", ", ".join(missing)
        )


def _retry_delay(attempt: int) -> float:
    return min(settings.database_init_retry_delay_seconds * attempt, 10.0)


async def init_db() -> None:
    """Wait for Postgres to accept connections, then create or verify the schema.

    Debug builds create tables directly; otherwise the schema belongs to
    Alembic and startup only reports tables that are missing.
    """
    total_attempts = settings.database_init_retries + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            async with engine.begin() as conn:
                await _prepare_schema(conn)
        except Exception as exc:
            if attempt >= total_attempts:
                logger.exception("Database unavailable after %d attempts", attempt)
                raise
            delay = _retry_delay(attempt)
            logger.warning(
                "Database not ready (attempt %d/%d, %s); retrying in %.1fs",
                attempt,
                total_attempts,
                exc.__class__.__name__,
                delay,
            )
            await asyncio.sleep(delay)
            continue
        if attempt > 1:
            logger.info("Database ready after %d attempts", attempt)
        return


async def close_db() -> None:
    await engine.dispose()


async def check_db() -> bool:
    """Return True when the database answers a trivial query."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("Database readiness check failed", exc_info=True)
        return False
