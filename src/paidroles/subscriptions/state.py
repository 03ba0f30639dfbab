"""Subscription state machine.

States and allowed transitions::

    Pending   -> Active | Cancelled | Failed
    Active    -> Expired | Cancelled | Pending   (Pending = renewal checkout)
    Expired   -> Pending
    Cancelled -> Pending
    Failed    -> Pending

Every other pair raises ``InvalidTransition``; callers must not perform side
effects (role changes, notifications) for a rejected transition.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from paidroles.db.models import Subscription, SubscriptionStatus
from paidroles.db.repositories.base import SubscriptionRepository
from paidroles.errors import InvalidTransition

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED, SubscriptionStatus.FAILED}
    ),
    SubscriptionStatus.ACTIVE: frozenset(
        {SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED, SubscriptionStatus.PENDING}
    ),
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.PENDING}),
    SubscriptionStatus.CANCELLED: frozenset({SubscriptionStatus.PENDING}),
    SubscriptionStatus.FAILED: frozenset({SubscriptionStatus.PENDING}),
}

EXPIRING_SOON_WINDOW = timedelta(days=7)


def can_transition(source: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    """Return True if ``source -> target`` is in the transition table."""
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


def check_transition(source: SubscriptionStatus, target: SubscriptionStatus) -> None:
    """Raise InvalidTransition unless ``source -> target`` is allowed."""
    if not can_transition(source, target):
        raise InvalidTransition(source.value, target.value)


async def transition(
    repo: SubscriptionRepository,
    subscription: Subscription,
    target: SubscriptionStatus,
    *,
    now: Optional[datetime] = None,
    payment_amount: Optional[int] = None,
    payment_date: Optional[datetime] = None,
) -> Subscription:
    """Validate and persist a status change.

    The write is conditional on the status the caller observed, so a
    concurrent change between read and write is reported as a rejected
    transition rather than silently overwritten. Transitions into Active
    record the payment amount and date (defaulting to ``now``).

    Args:
        repo: Subscription repository
        subscription: Subscription as last read by the caller
        target: Desired status
        now: Timestamp for ``updated_at`` (defaults to current UTC time)
        payment_amount: Amount paid, for transitions into Active
        payment_date: Payment time, for transitions into Active

    Returns:
        The updated subscription

    Raises:
        InvalidTransition: If the transition is not allowed, the status changed
            concurrently, or activating would give the member a second Active
            subscription on the server
        StorageError: If the store is unavailable
    """
    now = now or datetime.now(timezone.utc)
    source = subscription.status
    check_transition(source, target)

    if target is SubscriptionStatus.ACTIVE:
        existing = await repo.find_active(subscription.member_id, subscription.server_id)
        if existing is not None and existing.id != subscription.id:
            raise InvalidTransition(
                source.value,
                target.value,
                f"member already has Active subscription {existing.id} on this server",
            )
        payment_date = payment_date or now
    else:
        payment_amount = None
        payment_date = None

    updated = await repo.update_status(
        subscription.id,
        source,
        target,
        now=now,
        payment_amount=payment_amount,
        payment_date=payment_date,
    )

    if updated is None:
        current = await repo.get(subscription.id)
        current_status = current.status.value if current else "missing"
        raise InvalidTransition(
            source.value,
            target.value,
            f"status changed concurrently (now {current_status})",
        )

    logger.info(f"Subscription {subscription.id}: {source.value} -> {target.value}")
    return updated


def is_expiring_soon(expiry_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True if a subscription expires within the next 7 days (lifetime never does)."""
    if expiry_date is None:
        return False
    now = now or datetime.now(timezone.utc)
    remaining = expiry_date - now
    return timedelta(0) < remaining <= EXPIRING_SOON_WINDOW
