"""Shared asyncpg pool for the webhook server, cron jobs and migrations."""

import asyncio
import logging
from typing import Optional

import asyncpg

from paidroles.config import get_config
from paidroles.config.settings import AppConfig
from paidroles.errors import StorageError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5.0

_pool: Optional[asyncpg.Pool] = None


async def get_pool(config: Optional[AppConfig] = None) -> asyncpg.Pool:
    """
    Get or create the process-wide connection pool.

    The first call opens the pool and checks it with ``SELECT 1``; later
    calls return the same pool. Sessions run in UTC so timestamps written
    by the repositories compare correctly against the sweep cutoff.

    Raises:
        StorageError: If the database is unreachable or fails the check
    """
    global _pool

    if _pool is not None:
        return _pool

    config = config or get_config()

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                str(config.db_dsn),
                min_size=config.db_pool_min,
                max_size=config.db_pool_max,
                server_settings={"timezone": "UTC"},
            ),
            timeout=CONNECT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise StorageError(
            f"Database connection timed out after {CONNECT_TIMEOUT_SECONDS:.0f} seconds"
        ) from e
    except (asyncpg.PostgresError, OSError) as e:
        raise StorageError(f"Database connection failed: {e}") from e

    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
        if result != 1:
            raise StorageError(f"Health check failed: expected 1, got {result}")
    except StorageError:
        await pool.close()
        raise
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        await pool.close()
        raise StorageError(f"Database health check failed: {e}") from e

    _pool = pool
    logger.info(f"Database pool ready: min={config.db_pool_min}, max={config.db_pool_max}")
    return _pool


async def close_pool() -> None:
    """Close the pool if open; terminate it if close hangs on a leaked connection."""
    global _pool
    if _pool is None:
        return
    pool, _pool = _pool, None
    try:
        await asyncio.wait_for(pool.close(), timeout=CONNECT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Pool close timed out, terminating connections")
        pool.terminate()
