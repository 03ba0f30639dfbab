"""asyncpg-backed repository implementations."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import asyncpg

from paidroles.db.models import (
    ActivityLogEntry,
    ActorType,
    Member,
    Server,
    Subscription,
    SubscriptionContext,
    SubscriptionStatus,
    Table,
    Tier,
    TierDuration,
    Transaction,
    TransactionStatus,
    WebhookEvent,
)
from paidroles.db.repositories.base import (
    ActivityLogRepository,
    SubscriptionRepository,
    TransactionRepository,
    WebhookEventRepository,
)
from paidroles.errors import InvalidTransition, StorageError

logger = logging.getLogger(__name__)

_SUBSCRIPTION_COLUMNS = """
    id, member_id, server_id, tier_id, status, start_date, expiry_date,
    last_payment_amount, last_payment_date, created_at, updated_at
"""

_TRANSACTION_COLUMNS = """
    id, subscription_id, gateway_order_id, gateway_transaction_id, amount,
    currency, status, payment_method, payment_date, created_at, updated_at
"""


@asynccontextmanager
async def _connection(pool: asyncpg.Pool) -> AsyncIterator[asyncpg.Connection]:
    """Acquire a connection, translating store failures into StorageError."""
    try:
        async with pool.acquire() as conn:
            yield conn
    except (InvalidTransition, StorageError):
        raise
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
        logger.error(f"Storage operation failed: {e}")
        raise StorageError(str(e)) from e


def _subscription_from_row(row) -> Subscription:
    return Subscription(
        id=row["id"],
        member_id=row["member_id"],
        server_id=row["server_id"],
        tier_id=row["tier_id"],
        status=SubscriptionStatus(row["status"]),
        start_date=row["start_date"],
        expiry_date=row["expiry_date"],
        last_payment_amount=row["last_payment_amount"],
        last_payment_date=row["last_payment_date"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _transaction_from_row(row) -> Transaction:
    return Transaction(
        id=row["id"],
        subscription_id=row["subscription_id"],
        gateway_order_id=row["gateway_order_id"],
        gateway_transaction_id=row["gateway_transaction_id"],
        amount=row["amount"],
        currency=row["currency"],
        status=TransactionStatus(row["status"]),
        payment_method=row["payment_method"],
        payment_date=row["payment_date"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresSubscriptionRepository(SubscriptionRepository):
    """Subscriptions stored in PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create(self, subscription: Subscription) -> None:
        async with _connection(self.pool) as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.SUBSCRIPTIONS}
                    (id, member_id, server_id, tier_id, status, start_date,
                     expiry_date, last_payment_amount, last_payment_date,
                     created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                """,
                subscription.id,
                subscription.member_id,
                subscription.server_id,
                subscription.tier_id,
                subscription.status.value,
                subscription.start_date,
                subscription.expiry_date,
                subscription.last_payment_amount,
                subscription.last_payment_date,
                subscription.created_at,
                subscription.updated_at,
            )

    async def get(self, subscription_id: str) -> Optional[Subscription]:
        async with _connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_SUBSCRIPTION_COLUMNS} FROM {Table.SUBSCRIPTIONS} WHERE id = $1",
                subscription_id,
            )
        return _subscription_from_row(row) if row else None

    async def get_context(self, subscription_id: str) -> Optional[SubscriptionContext]:
        async with _connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT
                    s.id, s.member_id, s.server_id, s.tier_id, s.status,
                    s.start_date, s.expiry_date, s.last_payment_amount,
                    s.last_payment_date, s.created_at, s.updated_at,
                    t.name AS tier_name, t.price_cents, t.currency,
                    t.duration, t.discord_role_id,
                    ds.discord_id AS server_discord_id, ds.name AS server_name,
                    m.discord_id AS member_discord_id, m.email, m.username
                FROM {Table.SUBSCRIPTIONS} s
                JOIN {Table.PRICING_TIERS} t ON s.tier_id = t.id
                JOIN {Table.DISCORD_SERVERS} ds ON s.server_id = ds.id
                JOIN {Table.MEMBERS} m ON s.member_id = m.id
                WHERE s.id = $1
                """,
                subscription_id,
            )

        if not row:
            return None

        return SubscriptionContext(
            subscription=_subscription_from_row(row),
            tier=Tier(
                id=row["tier_id"],
                server_id=row["server_id"],
                name=row["tier_name"],
                price_cents=row["price_cents"],
                currency=row["currency"],
                duration=TierDuration(row["duration"]),
                discord_role_id=row["discord_role_id"],
            ),
            server=Server(
                id=row["server_id"],
                discord_id=row["server_discord_id"],
                name=row["server_name"],
            ),
            member=Member(
                id=row["member_id"],
                discord_id=row["member_discord_id"],
                email=row["email"],
                username=row["username"],
            ),
        )

    async def find_active(self, member_id: str, server_id: str) -> Optional[Subscription]:
        async with _connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM {Table.SUBSCRIPTIONS}
                WHERE member_id = $1 AND server_id = $2 AND status = $3
                LIMIT 1
                """,
                member_id,
                server_id,
                SubscriptionStatus.ACTIVE.value,
            )
        return _subscription_from_row(row) if row else None

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
        try:
            async with _connection(self.pool) as conn:
                row = await conn.fetchrow(
                    f"""
                    UPDATE {Table.SUBSCRIPTIONS}
                    SET status = $3,
                        updated_at = $4,
                        last_payment_amount = COALESCE($5, last_payment_amount),
                        last_payment_date = COALESCE($6, last_payment_date)
                    WHERE id = $1 AND status = $2
                    RETURNING {_SUBSCRIPTION_COLUMNS}
                    """,
                    subscription_id,
                    expected.value,
                    target.value,
                    now,
                    payment_amount,
                    payment_date,
                )
        except StorageError as e:
            # one_active_per_member_server partial unique index
            if isinstance(e.__cause__, asyncpg.UniqueViolationError):
                raise InvalidTransition(
                    expected.value,
                    target.value,
                    "member already has an Active subscription on this server",
                ) from e
            raise

        return _subscription_from_row(row) if row else None

    async def list_stale_pending(self, cutoff: datetime, limit: int) -> list[Subscription]:
        async with _connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM {Table.SUBSCRIPTIONS}
                WHERE status = $1 AND created_at < $2
                ORDER BY created_at
                LIMIT $3
                """,
                SubscriptionStatus.PENDING.value,
                cutoff,
                limit,
            )
        return [_subscription_from_row(row) for row in rows]


class PostgresTransactionRepository(TransactionRepository):
    """Transactions stored in PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create(self, transaction: Transaction) -> None:
        async with _connection(self.pool) as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.TRANSACTIONS}
                    (id, subscription_id, gateway_order_id, gateway_transaction_id,
                     amount, currency, status, payment_method, payment_date,
                     created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                """,
                transaction.id,
                transaction.subscription_id,
                transaction.gateway_order_id,
                transaction.gateway_transaction_id,
                transaction.amount,
                transaction.currency,
                transaction.status.value,
                transaction.payment_method,
                transaction.payment_date,
                transaction.created_at,
                transaction.updated_at,
            )

    async def get_by_order_id(self, order_id: str) -> Optional[Transaction]:
        async with _connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_TRANSACTION_COLUMNS}
                FROM {Table.TRANSACTIONS}
                WHERE gateway_order_id = $1
                """,
                order_id,
            )
        return _transaction_from_row(row) if row else None

    async def update_status(
        self,
        order_id: str,
        target: TransactionStatus,
        *,
        now: datetime,
        gateway_transaction_id: Optional[str] = None,
        payment_date: Optional[datetime] = None,
    ) -> bool:
        async with _connection(self.pool) as conn:
            updated = await conn.fetchval(
                f"""
                UPDATE {Table.TRANSACTIONS}
                SET status = $2,
                    updated_at = $3,
                    gateway_transaction_id = COALESCE($4, gateway_transaction_id),
                    payment_date = COALESCE($5, payment_date)
                WHERE gateway_order_id = $1 AND status <> $2
                  AND NOT ($2 = 'Pending' AND status IN ('Success', 'Refunded'))
                RETURNING id
                """,
                order_id,
                target.value,
                now,
                gateway_transaction_id,
                payment_date,
            )
        return updated is not None


class PostgresWebhookEventRepository(WebhookEventRepository):
    """Webhook ledger stored in PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def append(self, event: WebhookEvent) -> None:
        async with _connection(self.pool) as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.WEBHOOK_EVENTS}
                    (id, gateway_order_id, payload, signature, verified,
                     processed, processing_error, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                event.id,
                event.gateway_order_id,
                event.payload,
                event.signature,
                event.verified,
                event.processed,
                event.processing_error,
                event.created_at,
            )

    async def mark_processed(self, event_id: str, note: Optional[str] = None) -> None:
        async with _connection(self.pool) as conn:
            await conn.execute(
                f"""
                UPDATE {Table.WEBHOOK_EVENTS}
                SET processed = TRUE,
                    processing_error = COALESCE($2, processing_error)
                WHERE id = $1
                """,
                event_id,
                note,
            )

    async def list_for_order(self, order_id: str) -> list[WebhookEvent]:
        async with _connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT id, gateway_order_id, payload, signature, verified,
                       processed, processing_error, created_at
                FROM {Table.WEBHOOK_EVENTS}
                WHERE gateway_order_id = $1
                ORDER BY created_at
                """,
                order_id,
            )
        return [
            WebhookEvent(
                id=row["id"],
                gateway_order_id=row["gateway_order_id"],
                payload=row["payload"],
                signature=row["signature"],
                verified=row["verified"],
                processed=row["processed"],
                processing_error=row["processing_error"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


class PostgresActivityLogRepository(ActivityLogRepository):
    """Activity log stored in PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def append(self, entry: ActivityLogEntry) -> None:
        async with _connection(self.pool) as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.ACTIVITY_LOGS}
                    (id, subscription_id, actor_type, actor_id, action,
                     details, created_at)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7)
                """,
                entry.id,
                entry.subscription_id,
                entry.actor_type.value,
                entry.actor_id,
                entry.action,
                json.dumps(entry.details, default=str),
                entry.created_at,
            )

    async def list_for_subscription(
        self, subscription_id: str, limit: int = 50
    ) -> list[ActivityLogEntry]:
        async with _connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT id, subscription_id, actor_type, actor_id, action,
                       details, created_at
                FROM {Table.ACTIVITY_LOGS}
                WHERE subscription_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                subscription_id,
                limit,
            )
        return [
            ActivityLogEntry(
                id=row["id"],
                subscription_id=row["subscription_id"],
                actor_type=ActorType(row["actor_type"]),
                actor_id=row["actor_id"],
                action=row["action"],
                details=json.loads(row["details"]) if row["details"] else {},
                created_at=row["created_at"],
            )
            for row in rows
        ]
