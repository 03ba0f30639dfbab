"""Cron-compatible entry points for scheduled runs.

Provides callable functions with no arguments for cron integration:
- expire_pending_run()  (hourly)
"""

import asyncio
import logging
from datetime import timedelta

from paidroles.config.settings import get_config
from paidroles.db.pool import close_pool, get_pool
from paidroles.db.repositories.postgres import (
    PostgresActivityLogRepository,
    PostgresSubscriptionRepository,
)
from paidroles.subscriptions.activity import ActivityLog
from paidroles.subscriptions.sweeper import SweepResult, sweep_pending

logger = logging.getLogger(__name__)


async def run_expire_pending() -> SweepResult:
    """Cancel abandoned Pending subscriptions using the configured threshold."""
    config = get_config()
    pool = await get_pool()

    try:
        return await sweep_pending(
            PostgresSubscriptionRepository(pool),
            ActivityLog(PostgresActivityLogRepository(pool)),
            pending_timeout=timedelta(minutes=config.pending_timeout_minutes),
            batch_size=config.sweep_batch_size,
        )
    finally:
        await close_pool()


def expire_pending_run() -> None:
    """Entry point for the hourly abandoned-checkout sweep.

    Callable with no arguments for cron integration.
    """
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Cron: expire_pending_run triggered")
    asyncio.run(run_expire_pending())
