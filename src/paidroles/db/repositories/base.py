"""Abstract repository interfaces for subscriptions, transactions and audit logs.

The webhook orchestrator, synchronizer and sweeper depend only on these
interfaces. Implementations must raise ``StorageError`` when the underlying
store is unavailable.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from paidroles.db.models import (
    ActivityLogEntry,
    Subscription,
    SubscriptionContext,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    WebhookEvent,
)


class SubscriptionRepository(ABC):
    """Authoritative subscription records."""

    @abstractmethod
    async def create(self, subscription: Subscription) -> None:
        """Insert a new subscription."""

    @abstractmethod
    async def get(self, subscription_id: str) -> Optional[Subscription]:
        """Fetch a subscription by id."""

    @abstractmethod
    async def get_context(self, subscription_id: str) -> Optional[SubscriptionContext]:
        """Fetch a subscription together with its tier, server and member."""

    @abstractmethod
    async def find_active(self, member_id: str, server_id: str) -> Optional[Subscription]:
        """Return the member's Active subscription on a server, if any."""

    @abstractmethod
    async def update_status(
        self,
        subscription_id: str,
        expected: SubscriptionStatus,
        target: SubscriptionStatus,
        *,
        now: datetime,
        payment_amount: Optional[int] = None,
        payment_date: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """Compare-and-swap the status of a subscription.

        The row is only updated while its status still equals ``expected``.
        Payment fields are written when provided.

        Returns:
            The updated subscription, or None if the status had changed or the
            row does not exist.

        Raises:
            InvalidTransition: If the write would break the one-Active-per-
                member-per-server invariant.
        """

    @abstractmethod
    async def list_stale_pending(self, cutoff: datetime, limit: int) -> list[Subscription]:
        """List Pending subscriptions created strictly before ``cutoff``."""


class TransactionRepository(ABC):
    """Payment-gateway transaction records keyed by gateway order id."""

    @abstractmethod
    async def create(self, transaction: Transaction) -> None:
        """Insert a new transaction."""

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[Transaction]:
        """Fetch a transaction by gateway order id."""

    @abstractmethod
    async def update_status(
        self,
        order_id: str,
        target: TransactionStatus,
        *,
        now: datetime,
        gateway_transaction_id: Optional[str] = None,
        payment_date: Optional[datetime] = None,
    ) -> bool:
        """Move a transaction to ``target`` unless it is already there.

        Single conditional write (``status <> target``); concurrent deliveries
        of the same status see exactly one ``True``. A Pending target never
        overwrites Success or Refunded.
        """


class WebhookEventRepository(ABC):
    """Append-only ledger of inbound webhook deliveries."""

    @abstractmethod
    async def append(self, event: WebhookEvent) -> None:
        """Record a delivery."""

    @abstractmethod
    async def mark_processed(self, event_id: str, note: Optional[str] = None) -> None:
        """Flip ``processed`` and record the outcome note, if any."""

    @abstractmethod
    async def list_for_order(self, order_id: str) -> list[WebhookEvent]:
        """List deliveries for a gateway order id, oldest first."""


class ActivityLogRepository(ABC):
    """Append-only audit trail of entitlement actions."""

    @abstractmethod
    async def append(self, entry: ActivityLogEntry) -> None:
        """Record an activity."""

    @abstractmethod
    async def list_for_subscription(
        self, subscription_id: str, limit: int = 50
    ) -> list[ActivityLogEntry]:
        """List activities for a subscription, newest first."""
