"""Table-name constants, column enums and canonical row schemas."""

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Table:
    """Database table names."""

    DISCORD_SERVERS = "discord_servers"
    MEMBERS = "members"
    PRICING_TIERS = "pricing_tiers"
    SUBSCRIPTIONS = "subscriptions"
    TRANSACTIONS = "transactions"
    WEBHOOK_EVENTS = "webhook_events"
    ACTIVITY_LOGS = "activity_logs"
    SCHEMA_MIGRATIONS = "schema_migrations"


class SubscriptionStatus(str, Enum):
    """Subscription status."""

    PENDING = "Pending"
    ACTIVE = "Active"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class TransactionStatus(str, Enum):
    """Transaction status (also the internal vocabulary of gateway statuses)."""

    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class TierDuration(str, Enum):
    """Billing period of a pricing tier."""

    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class ActorType(str, Enum):
    """Who initiated an audited action."""

    SYSTEM = "system"
    SERVER_OWNER = "server_owner"


class Activity(str, Enum):
    """Activity log action names."""

    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    ROLE_GRANTED = "role_granted"
    ROLE_ASSIGNMENT_FAILED = "role_assignment_failed"
    ROLE_REMOVED = "role_removed"
    ROLE_REMOVAL_FAILED = "role_removal_failed"
    SUBSCRIPTION_REFUNDED = "subscription_refunded"
    TRANSITION_REJECTED = "transition_rejected"
    NOTIFICATION_FAILED = "notification_failed"
    PENDING_CANCELLED = "pending_cancelled"


@dataclass
class Server:
    """Discord server (guild) that sells roles."""

    id: str
    discord_id: str
    name: str


@dataclass
class Member:
    """Paying member."""

    id: str
    discord_id: Optional[str]
    email: Optional[str]
    username: Optional[str] = None


@dataclass
class Tier:
    """Pricing tier and the Discord role it entitles."""

    id: str
    server_id: str
    name: str
    price_cents: int
    currency: str
    duration: TierDuration
    discord_role_id: Optional[str]


@dataclass
class Subscription:
    """One member's access grant to one tier on one server."""

    id: str
    member_id: str
    server_id: str
    tier_id: str
    status: SubscriptionStatus
    start_date: datetime
    expiry_date: Optional[datetime]  # None means lifetime
    created_at: datetime
    updated_at: datetime
    last_payment_amount: Optional[int] = None
    last_payment_date: Optional[datetime] = None


@dataclass
class SubscriptionContext:
    """Subscription joined with its tier, server and member."""

    subscription: Subscription
    tier: Tier
    server: Server
    member: Member


@dataclass
class Transaction:
    """One payment-gateway attempt for a subscription."""

    id: str
    subscription_id: str
    gateway_order_id: str
    amount: int
    currency: str
    status: TransactionStatus
    created_at: datetime
    updated_at: datetime
    gateway_transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None


@dataclass
class WebhookEvent:
    """Audit record of one inbound webhook delivery."""

    id: str
    gateway_order_id: str
    payload: str
    signature: str
    verified: bool
    created_at: datetime
    processed: bool = False
    processing_error: Optional[str] = None


@dataclass
class ActivityLogEntry:
    """Audit trail entry for an entitlement or payment action."""

    id: str
    subscription_id: Optional[str]
    actor_type: ActorType
    action: str
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[str] = None


_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_id(length: int = 25) -> str:
    """Generate an opaque lowercase alphanumeric record id."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))
