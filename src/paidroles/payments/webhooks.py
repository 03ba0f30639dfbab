"""Payment webhook processing.

Turns one inbound gateway notification into at most one subscription state
transition plus its side effects, safely under gateway retries:

1. parse and validate the body (400, nothing recorded)
2. verify the signature (401, recorded unverified)
3. check freshness (400, recorded with an error note)
4. drop duplicates of an already-applied status, and late Pending for a
   settled payment (200)
5. record the delivery, map the status, correlate to a subscription
6. apply the transition; role and notification side effects follow only
   from an accepted transition
7. mark the delivery processed and acknowledge with 200

Only store failures surface as 5xx, so the gateway retries exactly when
nothing durable was written.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from paidroles.config.settings import AppConfig, get_config
from paidroles.db.models import (
    Activity,
    SubscriptionContext,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    WebhookEvent,
    new_id,
)
from paidroles.db.repositories.base import (
    SubscriptionRepository,
    TransactionRepository,
    WebhookEventRepository,
)
from paidroles.errors import ErrorKind, InvalidTransition, StorageError
from paidroles.notifications.dispatcher import NotificationDispatcher
from paidroles.payments.gateway import MidtransClient
from paidroles.payments.orders import parse_order_id
from paidroles.payments.signature import is_fresh, parse_gateway_time, verify_signature
from paidroles.payments.status import map_external_status
from paidroles.payments.sync import EntitlementSync
from paidroles.subscriptions.activity import ActivityLog
from paidroles.subscriptions.state import transition

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"

# A late Pending for these changes nothing
SETTLED = (TransactionStatus.SUCCESS, TransactionStatus.REFUNDED)


class GatewayNotification(BaseModel):
    """Inbound payment notification body."""

    model_config = ConfigDict(extra="allow")

    order_id: str = Field(min_length=1)
    status_code: str = Field(min_length=1)
    gross_amount: str = Field(min_length=1)
    transaction_status: str = Field(min_length=1)
    transaction_id: str = Field(min_length=1)
    transaction_time: str = Field(min_length=1)
    payment_date: Optional[str] = None
    payment_type: Optional[str] = None
    fraud_status: Optional[str] = None

    @field_validator("status_code", "gross_amount", mode="before")
    @classmethod
    def numbers_as_text(cls, v: Any) -> Any:
        """Accept bare numbers; the signature is computed over their text form."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("order_id")
    @classmethod
    def no_nul(cls, v: str) -> str:
        if "\x00" in v:
            raise ValueError("order_id contains a NUL character")
        return v


@dataclass
class WebhookOutcome:
    """Result of handling one delivery, ready to become an HTTP response."""

    kind: str
    http_status: int
    message: str
    code: Optional[str] = None

    def to_response(self) -> web.Response:
        if self.http_status < 400:
            return web.json_response(
                {"status": "ok", "message": self.message}, status=self.http_status
            )
        return web.json_response(
            {"success": False, "error": {"code": self.code, "message": self.message}},
            status=self.http_status,
        )


def _ok(kind: str, message: str) -> WebhookOutcome:
    return WebhookOutcome(kind=kind, http_status=200, message=message)


def _error(kind: ErrorKind, status: int, code: str, message: str) -> WebhookOutcome:
    return WebhookOutcome(kind=kind.value, http_status=status, message=message, code=code)


@dataclass
class _Trace:
    """Fields for the per-delivery summary log line."""

    order_id: Optional[str] = None
    gateway_status: Optional[str] = None
    started: float = field(default_factory=time.monotonic)


class WebhookProcessor:
    """Processes gateway notifications against the subscription store.

    Depends only on repository interfaces and collaborator wrappers, so it
    runs unchanged against PostgreSQL or in-memory fakes.
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        transactions: TransactionRepository,
        events: WebhookEventRepository,
        activity: ActivityLog,
        sync: EntitlementSync,
        notifier: NotificationDispatcher,
        config: Optional[AppConfig] = None,
        gateway: Optional[MidtransClient] = None,
    ):
        self.subscriptions = subscriptions
        self.transactions = transactions
        self.events = events
        self.activity = activity
        self.sync = sync
        self.notifier = notifier
        self.config = config or get_config()
        self.gateway = gateway

    async def process(
        self,
        body: bytes,
        signature: Optional[str],
        now: Optional[datetime] = None,
    ) -> WebhookOutcome:
        """Handle one delivery.

        Args:
            body: Raw request body
            signature: ``X-Signature`` header value, if present
            now: Reference time for freshness and timestamps

        Returns:
            WebhookOutcome describing the HTTP response to send
        """
        now = now or datetime.now(timezone.utc)
        trace = _Trace()

        try:
            outcome = await self._process(body, signature, now, trace)
        except StorageError as e:
            logger.error(f"Store unavailable while processing webhook {trace.order_id}: {e}")
            outcome = _error(
                ErrorKind.STORAGE_FAILURE, 503, "STORAGE_UNAVAILABLE",
                "Storage temporarily unavailable",
            )

        _log_outcome(outcome, trace)
        return outcome

    async def _process(
        self, body: bytes, signature: Optional[str], now: datetime, trace: _Trace
    ) -> WebhookOutcome:
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return _error(ErrorKind.REJECTED_INPUT, 400, "INVALID_JSON", "Invalid JSON payload")

        try:
            notification = GatewayNotification.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Webhook payload failed validation: {e.error_count()} error(s)")
            return _error(
                ErrorKind.REJECTED_INPUT, 400, "INVALID_PAYLOAD", "Invalid webhook payload"
            )

        trace.order_id = notification.order_id
        trace.gateway_status = notification.transaction_status
        payload = body.decode("utf-8", errors="replace")

        if not signature:
            await self._record(notification, payload, "", False, now, "Missing signature")
            return _error(
                ErrorKind.UNVERIFIED, 401, "MISSING_SIGNATURE", "X-Signature header required"
            )

        if not verify_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            signature,
            self.config.midtrans_server_key.get_secret_value(),
        ):
            await self._record(notification, payload, signature, False, now, "Invalid signature")
            return _error(
                ErrorKind.UNVERIFIED, 401, "INVALID_SIGNATURE",
                "Webhook signature verification failed",
            )

        if not is_fresh(
            notification.transaction_time,
            max_age=timedelta(hours=self.config.webhook_max_age_hours),
            now=now,
            tz=self.config.gateway_timezone,
        ):
            await self._record(
                notification, payload, signature, True, now,
                f"Webhook too old: transaction_time={notification.transaction_time}",
            )
            return _error(ErrorKind.UNVERIFIED, 400, "OLD_WEBHOOK", "Webhook is too old to process")

        mapping = map_external_status(notification.transaction_status)
        existing = await self.transactions.get_by_order_id(notification.order_id)

        event = await self._record(notification, payload, signature, True, now)

        if _is_duplicate(existing, mapping.internal_status):
            logger.info(
                f"Webhook for {notification.order_id} already processed "
                f"(status {existing.status.value})"
            )
            await self.events.mark_processed(event.id, "already processed")
            return _ok(DUPLICATE, "Webhook already processed")

        if not mapping.is_valid:
            logger.warning(
                f"Unknown gateway status '{notification.transaction_status}' "
                f"for {notification.order_id}, acknowledging"
            )
            await self.events.mark_processed(
                event.id, f"Unknown status ignored: {notification.transaction_status}"
            )
            return _ok(ErrorKind.UNRECOGNIZED.value, "Unknown status ignored")

        payment_date = (
            parse_gateway_time(notification.payment_date or "", self.config.gateway_timezone)
            or now
        )
        outcome = await self._apply(
            notification.order_id,
            mapping.internal_status,
            existing,
            gateway_status=notification.transaction_status,
            gateway_transaction_id=notification.transaction_id,
            payment_date=payment_date,
            now=now,
        )
        await self.events.mark_processed(
            event.id, None if outcome.kind == PROCESSED else outcome.message
        )
        return outcome

    async def reconcile(self, order_id: str, now: Optional[datetime] = None) -> WebhookOutcome:
        """Pull an order's status from the gateway and apply it.

        Covers lost webhooks. Uses the same duplicate check and dispatch as a
        verified delivery, without writing a ledger entry.

        Returns:
            WebhookOutcome; a gateway failure yields a 502 outcome
        """
        now = now or datetime.now(timezone.utc)
        trace = _Trace(order_id=order_id)

        if self.gateway is None:
            raise RuntimeError("Gateway client not configured for reconciliation")

        try:
            outcome = await self._reconcile(order_id, now, trace)
        except StorageError as e:
            logger.error(f"Store unavailable while reconciling {order_id}: {e}")
            outcome = _error(
                ErrorKind.STORAGE_FAILURE, 503, "STORAGE_UNAVAILABLE",
                "Storage temporarily unavailable",
            )

        _log_outcome(outcome, trace)
        return outcome

    async def _reconcile(self, order_id: str, now: datetime, trace: _Trace) -> WebhookOutcome:
        result = await self.gateway.get_transaction_status(order_id)
        if not result.success:
            return _error(
                ErrorKind.COLLABORATOR_FAILURE, 502, "GATEWAY_UNAVAILABLE", result.error or ""
            )

        gateway_status = result.data.get("transaction_status", "")
        trace.gateway_status = gateway_status
        mapping = map_external_status(gateway_status)
        if not mapping.is_valid:
            return _ok(ErrorKind.UNRECOGNIZED.value, "Unknown status ignored")

        existing = await self.transactions.get_by_order_id(order_id)
        if _is_duplicate(existing, mapping.internal_status):
            return _ok(DUPLICATE, "Already up to date")

        payment_time = result.data.get("settlement_time") or result.data.get("transaction_time")
        return await self._apply(
            order_id,
            mapping.internal_status,
            existing,
            gateway_status=gateway_status,
            gateway_transaction_id=result.data.get("transaction_id"),
            payment_date=parse_gateway_time(payment_time or "", self.config.gateway_timezone)
            or now,
            now=now,
        )

    async def _apply(
        self,
        order_id: str,
        status: TransactionStatus,
        existing: Optional[Transaction],
        *,
        gateway_status: str,
        gateway_transaction_id: Optional[str],
        payment_date: datetime,
        now: datetime,
    ) -> WebhookOutcome:
        subscription_id = parse_order_id(order_id, self.config.order_id_prefix)
        if subscription_id is None:
            logger.warning(f"Cannot correlate order id {order_id} to a subscription")
            return _ok(ErrorKind.UNRECOGNIZED.value, "Invalid order ID")

        ctx = await self.subscriptions.get_context(subscription_id)
        if ctx is None:
            logger.warning(f"Subscription {subscription_id} for order {order_id} not found")
            return _ok(ErrorKind.UNRECOGNIZED.value, "Subscription not found")

        if existing is None or existing.subscription_id != ctx.subscription.id:
            logger.warning(f"No transaction for order {order_id} on subscription {subscription_id}")
            return _ok(ErrorKind.UNRECOGNIZED.value, "Transaction not found")

        try:
            if status is TransactionStatus.SUCCESS:
                return await self._on_success(
                    ctx, existing, gateway_transaction_id, payment_date, now
                )
            if status is TransactionStatus.FAILED:
                return await self._on_failed(ctx, existing, gateway_status, now)
            if status is TransactionStatus.REFUNDED:
                return await self._on_refunded(ctx, existing, gateway_transaction_id, now)

            await self.transactions.update_status(order_id, TransactionStatus.PENDING, now=now)
            return _ok(PROCESSED, "Payment pending")

        except InvalidTransition as e:
            logger.warning(f"Rejected transition for order {order_id}: {e}")
            await self.activity.record(
                ctx.subscription.id,
                Activity.TRANSITION_REJECTED,
                {
                    "order_id": order_id,
                    "gateway_status": gateway_status,
                    "from": e.source,
                    "to": e.target,
                    "reason": e.reason,
                },
            )
            return _ok(ErrorKind.INVALID_TRANSITION.value, str(e))

    async def _on_success(
        self,
        ctx: SubscriptionContext,
        txn: Transaction,
        gateway_transaction_id: Optional[str],
        payment_date: datetime,
        now: datetime,
    ) -> WebhookOutcome:
        # Conditional write: of concurrent deliveries, only one claims the payment
        claimed = await self.transactions.update_status(
            txn.gateway_order_id,
            TransactionStatus.SUCCESS,
            now=now,
            gateway_transaction_id=gateway_transaction_id,
            payment_date=payment_date,
        )
        if not claimed:
            return _ok(DUPLICATE, "Webhook already processed")

        ctx.subscription = await transition(
            self.subscriptions,
            ctx.subscription,
            SubscriptionStatus.ACTIVE,
            now=now,
            payment_amount=txn.amount,
            payment_date=payment_date,
        )

        await self.activity.record(
            ctx.subscription.id,
            Activity.PAYMENT_RECEIVED,
            {
                "order_id": txn.gateway_order_id,
                "gateway_transaction_id": gateway_transaction_id,
                "amount": txn.amount,
                "currency": txn.currency,
                "tier_name": ctx.tier.name,
            },
        )

        granted = await self.sync.grant(ctx)
        if granted.success:
            await self.notifier.payment_succeeded(ctx)

        return _ok(PROCESSED, "Webhook processed successfully")

    async def _on_failed(
        self,
        ctx: SubscriptionContext,
        txn: Transaction,
        gateway_status: str,
        now: datetime,
    ) -> WebhookOutcome:
        ctx.subscription = await transition(
            self.subscriptions, ctx.subscription, SubscriptionStatus.FAILED, now=now
        )
        await self.transactions.update_status(
            txn.gateway_order_id, TransactionStatus.FAILED, now=now
        )

        await self.notifier.payment_failed(ctx, reason=f"payment {gateway_status}")
        await self.activity.record(
            ctx.subscription.id,
            Activity.PAYMENT_FAILED,
            {"order_id": txn.gateway_order_id, "gateway_status": gateway_status},
        )
        return _ok(PROCESSED, "Webhook processed successfully")

    async def _on_refunded(
        self,
        ctx: SubscriptionContext,
        txn: Transaction,
        gateway_transaction_id: Optional[str],
        now: datetime,
    ) -> WebhookOutcome:
        was_active = ctx.subscription.status is SubscriptionStatus.ACTIVE
        ctx.subscription = await transition(
            self.subscriptions, ctx.subscription, SubscriptionStatus.CANCELLED, now=now
        )
        await self.transactions.update_status(
            txn.gateway_order_id,
            TransactionStatus.REFUNDED,
            now=now,
            gateway_transaction_id=gateway_transaction_id,
        )

        role_removed = False
        role_error = None
        if was_active:
            revoked = await self.sync.revoke(ctx)
            role_removed = revoked.success
            role_error = revoked.error

        await self.activity.record(
            ctx.subscription.id,
            Activity.SUBSCRIPTION_REFUNDED,
            {
                "order_id": txn.gateway_order_id,
                "amount": txn.amount,
                "role_removed": role_removed,
                "role_error": role_error,
            },
        )
        return _ok(PROCESSED, "Webhook processed successfully")

    async def _record(
        self,
        notification: GatewayNotification,
        payload: str,
        signature: str,
        verified: bool,
        now: datetime,
        error: Optional[str] = None,
    ) -> WebhookEvent:
        event = WebhookEvent(
            id=new_id(),
            gateway_order_id=notification.order_id,
            payload=payload,
            signature=signature,
            verified=verified,
            created_at=now,
            processing_error=error,
        )
        await self.events.append(event)
        return event


def _is_duplicate(existing: Optional[Transaction], status: Optional[TransactionStatus]) -> bool:
    """True if the delivery carries nothing new for the transaction.

    Either the transaction already holds the (non-Pending) status being
    delivered, or a late Pending arrives for a payment that has settled.
    """
    if existing is None or status is None:
        return False
    if status is TransactionStatus.PENDING:
        return existing.status in SETTLED
    return existing.status is status


def _log_outcome(outcome: WebhookOutcome, trace: _Trace) -> None:
    duration_ms = int((time.monotonic() - trace.started) * 1000)
    logger.info(
        f"webhook_outcome outcome={outcome.kind} http_status={outcome.http_status} "
        f"order_id={trace.order_id} gateway_status={trace.gateway_status} "
        f"duration_ms={duration_ms}"
    )


async def handle_webhook(request: web.Request) -> web.Response:
    """Handle POST /webhooks/payment.

    Args:
        request: aiohttp request; the app must hold a ``processor``

    Returns:
        aiohttp.web.Response with the JSON outcome
    """
    processor: WebhookProcessor = request.app["processor"]
    body = await request.read()
    outcome = await processor.process(body, request.headers.get("X-Signature"))
    return outcome.to_response()
