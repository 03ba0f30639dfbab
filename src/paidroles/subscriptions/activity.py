"""Activity log service: audit trail of entitlement and payment actions."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from paidroles.db.models import ActivityLogEntry, ActorType, new_id
from paidroles.db.repositories.base import ActivityLogRepository
from paidroles.errors import StorageError

logger = logging.getLogger(__name__)


class ActivityLog:
    """Writes ActivityLogEntry rows.

    Recording is best-effort: a store failure is logged and does not abort
    the operation being audited.
    """

    def __init__(self, repo: ActivityLogRepository):
        self.repo = repo

    async def record(
        self,
        subscription_id: Optional[str],
        action: str,
        details: Optional[dict[str, Any]] = None,
        *,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: Optional[str] = None,
    ) -> Optional[ActivityLogEntry]:
        """Append an entry; returns it, or None if it could not be stored."""
        entry = ActivityLogEntry(
            id=new_id(),
            subscription_id=subscription_id,
            actor_type=actor_type,
            actor_id=actor_id,
            action=str(getattr(action, "value", action)),
            details=details or {},
            created_at=datetime.now(timezone.utc),
        )

        try:
            await self.repo.append(entry)
        except StorageError as e:
            logger.error(
                f"Failed to record activity {entry.action} for subscription "
                f"{subscription_id}: {e}"
            )
            return None

        logger.debug(f"Activity {entry.action} recorded for {subscription_id}")
        return entry

    async def history(self, subscription_id: str, limit: int = 50) -> list[ActivityLogEntry]:
        """Most recent activities for a subscription, newest first."""
        return await self.repo.list_for_subscription(subscription_id, limit=limit)
