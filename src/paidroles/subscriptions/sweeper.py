"""Expiry sweep: cancel Pending subscriptions whose checkout was abandoned."""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from paidroles.db.models import Activity, SubscriptionStatus
from paidroles.db.repositories.base import SubscriptionRepository
from paidroles.errors import InvalidTransition
from paidroles.subscriptions.activity import ActivityLog
from paidroles.subscriptions.state import transition

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts for one sweep run."""

    scanned: int = 0
    cancelled: int = 0
    skipped: int = 0


async def sweep_pending(
    subscriptions: SubscriptionRepository,
    activity: ActivityLog,
    *,
    pending_timeout: timedelta = timedelta(hours=1),
    batch_size: int = 500,
    now: Optional[datetime] = None,
) -> SweepResult:
    """Cancel every Pending subscription created before ``now - pending_timeout``.

    Selection is by absolute age, so re-running is safe. Each row goes through
    the state machine; a subscription that was activated (or otherwise
    changed) between the scan and the write is skipped. Transactions are left
    as they are, so a late settlement webhook is still recorded.

    Args:
        subscriptions: Subscription repository
        activity: Activity log service
        pending_timeout: Abandonment threshold
        batch_size: Maximum rows processed this run
        now: Reference time (defaults to current UTC time)

    Returns:
        SweepResult with scanned/cancelled/skipped counts

    Raises:
        StorageError: If the store is unavailable
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - pending_timeout
    stale = await subscriptions.list_stale_pending(cutoff, batch_size)

    result = SweepResult(scanned=len(stale))

    for subscription in stale:
        try:
            await transition(subscriptions, subscription, SubscriptionStatus.CANCELLED, now=now)
        except InvalidTransition as e:
            logger.info(f"Skipping subscription {subscription.id}: {e}")
            result.skipped += 1
            continue

        result.cancelled += 1
        await activity.record(
            subscription.id,
            Activity.PENDING_CANCELLED,
            {
                "reason": "payment not completed",
                "created_at": subscription.created_at.isoformat(),
                "timeout_minutes": int(pending_timeout.total_seconds() // 60),
            },
        )

    logger.info(
        f"sweep_outcome scanned={result.scanned} cancelled={result.cancelled} "
        f"skipped={result.skipped}"
    )
    return result


def authorize_trigger(authorization: Optional[str], secret: str) -> bool:
    """Check a manual trigger's ``Authorization`` header.

    An empty secret disables the check.
    """
    if not secret:
        return True
    if not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode())
