"""Repository interfaces and their PostgreSQL implementations."""

from paidroles.db.repositories.base import (
    ActivityLogRepository,
    SubscriptionRepository,
    TransactionRepository,
    WebhookEventRepository,
)
from paidroles.db.repositories.postgres import (
    PostgresActivityLogRepository,
    PostgresSubscriptionRepository,
    PostgresTransactionRepository,
    PostgresWebhookEventRepository,
)

__all__ = [
    # Interfaces
    "SubscriptionRepository",
    "TransactionRepository",
    "WebhookEventRepository",
    "ActivityLogRepository",
    # PostgreSQL
    "PostgresSubscriptionRepository",
    "PostgresTransactionRepository",
    "PostgresWebhookEventRepository",
    "PostgresActivityLogRepository",
]
