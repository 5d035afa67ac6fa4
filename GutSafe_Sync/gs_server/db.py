"""
Process-wide asyncpg pool for the ingest service.

The API lifespan (or SyncCore, when the device store is PostgreSQL) opens it
once; everything else reads `db.pool`. Tests assign `db.pool` directly.
"""

import asyncio
import logging
from typing import Optional

import asyncpg

from GutSafe_Sync.gs_server import config
from GutSafe_Sync.gs_shared.errors import ConnectionPoolError

logger = logging.getLogger(__name__)

pool: Optional[asyncpg.Pool] = None


async def create_pool(dsn: str, min_size: int = config.PG_POOL_MIN_SIZE,
                      max_size: int = config.PG_POOL_MAX_SIZE) -> asyncpg.Pool:
    """Open the shared pool, or hand back the one already open."""
    global pool
    if pool is None:
        try:
            pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
        except (asyncpg.PostgresError, OSError) as e:
            raise ConnectionPoolError(f"Cannot open pool for {_redacted(dsn)}: {e}")
        logger.info("PostgreSQL pool open on %s (%d-%d connections)", _redacted(dsn), min_size, max_size)
    return pool


def _redacted(dsn: str) -> str:
    # drop credentials before the DSN reaches a log line or an error
    return dsn.rsplit("@", 1)[-1]


async def ensure_schema(p: asyncpg.Pool) -> None:
    try:
        async with p.acquire() as conn:
            await conn.execute(config.SCHEMA_SQL)
    except asyncpg.PostgresError as e:
        raise ConnectionPoolError(f"Schema setup failed: {e}")


async def close_pool() -> None:
    global pool
    closing, pool = pool, None
    if closing is None:
        return
    try:
        await asyncio.wait_for(closing.close(), timeout=config.PG_POOL_CLOSE_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("Pool did not close within %.0fs; terminating", config.PG_POOL_CLOSE_TIMEOUT)
        closing.terminate()


async def health_check() -> bool:
    """Connected and the ingest table exists."""
    if pool is None:
        return False
    try:
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT to_regclass('scan_submissions') IS NOT NULL")
    except (asyncpg.PostgresError, OSError, asyncio.TimeoutError):
        return False
