"""Best-effort member notification: Discord DM first, email as fallback."""

import logging
from dataclasses import dataclass
from typing import Optional

from paidroles.db.models import Activity, SubscriptionContext
from paidroles.discord_bot.formatter import format_payment_failed_dm, format_payment_success_dm
from paidroles.discord_bot.gateway import DiscordGateway
from paidroles.errors import CallResult
from paidroles.notifications.email import EmailSender
from paidroles.subscriptions.activity import ActivityLog

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Which channel delivered the notification, if any."""

    channel: Optional[str]  # "dm" | "email" | None
    dm: Optional[CallResult] = None
    email: Optional[CallResult] = None

    @property
    def delivered(self) -> bool:
        return self.channel is not None


class NotificationDispatcher:
    """Notifies members about payment outcomes.

    Both channels are best-effort. When neither delivers, a
    ``notification_failed`` activity is recorded and the caller carries on.
    """

    def __init__(
        self,
        discord: Optional[DiscordGateway],
        email: Optional[EmailSender],
        activity: ActivityLog,
    ):
        self.discord = discord
        self.email = email
        self.activity = activity

    async def payment_succeeded(self, ctx: SubscriptionContext) -> NotificationResult:
        amount = ctx.subscription.last_payment_amount or ctx.tier.price_cents
        return await self._notify(
            ctx,
            kind="payment_success",
            dm_text=format_payment_success_dm(ctx.tier.name, ctx.server.name),
            send_email=lambda to: self.email.send_payment_success(
                to, ctx.tier.name, amount, ctx.tier.currency
            ),
        )

    async def payment_failed(
        self, ctx: SubscriptionContext, reason: Optional[str] = None
    ) -> NotificationResult:
        return await self._notify(
            ctx,
            kind="payment_failed",
            dm_text=format_payment_failed_dm(ctx.server.name, reason),
            send_email=lambda to: self.email.send_payment_failed(to, reason),
        )

    async def _notify(self, ctx: SubscriptionContext, kind: str, dm_text: str, send_email):
        result = NotificationResult(channel=None)
        member = ctx.member

        if self.discord is not None and member.discord_id:
            result.dm = await self.discord.send_dm(member.discord_id, dm_text)
            if result.dm.success:
                result.channel = "dm"
                return result
            logger.info(
                f"DM to member {member.id} failed ({result.dm.error}), trying email fallback"
            )

        if self.email is not None and member.email:
            result.email = await send_email(member.email)
            if result.email.success:
                result.channel = "email"
                return result

        logger.warning(f"Could not notify member {member.id} ({kind}) on any channel")
        await self.activity.record(
            ctx.subscription.id,
            Activity.NOTIFICATION_FAILED,
            {
                "notification": kind,
                "dm_error": result.dm.error if result.dm else "no discord id",
                "email_error": result.email.error if result.email else "no email on file",
            },
        )
        return result
