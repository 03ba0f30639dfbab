"""Checkout: create a Pending subscription and a gateway payment for it."""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from paidroles.config.settings import AppConfig, get_config
from paidroles.db.models import (
    Member,
    Subscription,
    SubscriptionStatus,
    Tier,
    TierDuration,
    Transaction,
    TransactionStatus,
    new_id,
)
from paidroles.db.repositories.base import SubscriptionRepository, TransactionRepository
from paidroles.errors import PaidRolesError
from paidroles.payments.gateway import MidtransClient
from paidroles.payments.orders import generate_order_id
from paidroles.subscriptions.state import transition

logger = logging.getLogger(__name__)

PAYMENT_WINDOW = timedelta(hours=24)


class ActiveSubscriptionExists(PaidRolesError):
    """The member already has an Active subscription on the server."""


class CheckoutFailed(PaidRolesError):
    """The gateway refused or could not create the payment."""


@dataclass
class CheckoutResult:
    """What the member needs to complete payment."""

    subscription_id: str
    transaction_id: str
    order_id: str
    redirect_url: str
    token: Optional[str]
    expires_at: datetime


def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_expiry_date(duration: TierDuration, start: datetime) -> Optional[datetime]:
    """Expiry for a tier bought at ``start``; None for lifetime tiers.

    Month arithmetic clamps to the last day of the month (Jan 31 -> Feb 28/29).
    """
    if duration is TierDuration.MONTHLY:
        return _add_months(start, 1)
    if duration is TierDuration.YEARLY:
        return _add_months(start, 12)
    return None


async def start_checkout(
    subscriptions: SubscriptionRepository,
    transactions: TransactionRepository,
    gateway: MidtransClient,
    member: Member,
    tier: Tier,
    *,
    config: Optional[AppConfig] = None,
    now: Optional[datetime] = None,
) -> CheckoutResult:
    """Start a payment for ``tier``.

    The subscription and transaction are written before the gateway is called
    so a fast webhook always finds them. If the gateway call fails both are
    marked Failed; records are never deleted.

    Args:
        subscriptions: Subscription repository
        transactions: Transaction repository
        gateway: Payment gateway client
        member: Paying member
        tier: Pricing tier being purchased
        config: Application config (defaults to the process config)
        now: Reference time

    Returns:
        CheckoutResult with the gateway redirect URL

    Raises:
        ActiveSubscriptionExists: If the member already has an Active
            subscription on the tier's server
        CheckoutFailed: If the gateway could not create the payment
        StorageError: If the store is unavailable
    """
    config = config or get_config()
    now = now or datetime.now(timezone.utc)

    active = await subscriptions.find_active(member.id, tier.server_id)
    if active is not None:
        raise ActiveSubscriptionExists(
            f"Member {member.id} already has Active subscription {active.id} "
            f"on server {tier.server_id}"
        )

    subscription = Subscription(
        id=new_id(),
        member_id=member.id,
        server_id=tier.server_id,
        tier_id=tier.id,
        status=SubscriptionStatus.PENDING,
        start_date=now,
        expiry_date=calculate_expiry_date(tier.duration, now),
        created_at=now,
        updated_at=now,
    )
    await subscriptions.create(subscription)

    order_id = generate_order_id(
        subscription.id, config.order_id_prefix, now_ms=int(now.timestamp() * 1000)
    )
    txn = Transaction(
        id=new_id(),
        subscription_id=subscription.id,
        gateway_order_id=order_id,
        amount=tier.price_cents,
        currency=tier.currency,
        status=TransactionStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    await transactions.create(txn)

    result = await gateway.create_transaction(
        order_id, tier.price_cents, member.email, tier.name, member_id=member.id
    )
    if not result.success:
        logger.error(f"Checkout for subscription {subscription.id} failed: {result.error}")
        await transactions.update_status(order_id, TransactionStatus.FAILED, now=now)
        await transition(subscriptions, subscription, SubscriptionStatus.FAILED, now=now)
        raise CheckoutFailed(result.error or "Failed to create payment")

    logger.info(f"Checkout started: subscription={subscription.id} order={order_id}")

    return CheckoutResult(
        subscription_id=subscription.id,
        transaction_id=txn.id,
        order_id=order_id,
        redirect_url=result.data["redirect_url"],
        token=result.data.get("token"),
        expires_at=now + PAYMENT_WINDOW,
    )
