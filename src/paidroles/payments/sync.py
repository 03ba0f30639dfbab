"""Entitlement sync: keep Discord role membership in line with subscriptions."""

import logging
from typing import Optional

from paidroles.db.models import Activity, ActorType, SubscriptionContext
from paidroles.discord_bot.gateway import DiscordGateway
from paidroles.errors import CallResult
from paidroles.subscriptions.activity import ActivityLog

logger = logging.getLogger(__name__)


class EntitlementSync:
    """Grants and revokes tier roles through the Discord gateway.

    Outcomes are recorded as activity log entries. Failures are never retried
    here and never raised: the subscription record is the source of truth and
    role membership catches up with it out of band.
    """

    def __init__(self, discord: Optional[DiscordGateway], activity: ActivityLog):
        self.discord = discord
        self.activity = activity

    async def grant(
        self,
        ctx: SubscriptionContext,
        *,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: Optional[str] = None,
    ) -> CallResult:
        """Give the member the tier's role.

        Runs the bot permission precheck first; if it fails the role change is
        not attempted and ``role_assignment_failed`` is recorded with
        ``stage=permission_check``.

        Args:
            ctx: Subscription with tier, server and member
            actor_type: Who initiated the grant (owner overrides use SERVER_OWNER)
            actor_id: Id of the initiating owner, if any

        Returns:
            CallResult of the precheck or the role assignment
        """
        target = self._target(ctx)
        if isinstance(target, CallResult):
            await self._record(ctx, Activity.ROLE_ASSIGNMENT_FAILED, target, "precondition",
                               actor_type, actor_id)
            return target

        guild_id, user_id, role_id = target

        precheck = await self.discord.validate_bot_permissions(guild_id, role_id)
        if not precheck.success:
            logger.error(
                f"Bot permission check failed for server {ctx.server.id}: {precheck.error}"
            )
            await self._record(ctx, Activity.ROLE_ASSIGNMENT_FAILED, precheck, "permission_check",
                               actor_type, actor_id)
            return precheck

        result = await self.discord.assign_role(guild_id, user_id, role_id)
        if result.success:
            logger.info(
                f"Granted role {role_id} to user {user_id} for subscription {ctx.subscription.id}"
            )
            await self._record(ctx, Activity.ROLE_GRANTED, result, None, actor_type, actor_id)
        else:
            logger.error(f"Failed to assign role {role_id} to user {user_id}: {result.error}")
            await self._record(ctx, Activity.ROLE_ASSIGNMENT_FAILED, result, "assign",
                               actor_type, actor_id)
        return result

    async def revoke(
        self,
        ctx: SubscriptionContext,
        *,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: Optional[str] = None,
    ) -> CallResult:
        """Remove the tier's role from the member."""
        target = self._target(ctx)
        if isinstance(target, CallResult):
            await self._record(ctx, Activity.ROLE_REMOVAL_FAILED, target, "precondition",
                               actor_type, actor_id)
            return target

        guild_id, user_id, role_id = target
        result = await self.discord.remove_role(guild_id, user_id, role_id)
        if result.success:
            logger.info(
                f"Removed role {role_id} from user {user_id} for subscription {ctx.subscription.id}"
            )
            await self._record(ctx, Activity.ROLE_REMOVED, result, None, actor_type, actor_id)
        else:
            logger.error(f"Failed to remove role {role_id} from user {user_id}: {result.error}")
            await self._record(ctx, Activity.ROLE_REMOVAL_FAILED, result, "remove",
                               actor_type, actor_id)
        return result

    def _target(self, ctx: SubscriptionContext):
        if self.discord is None:
            return CallResult.fail("Discord client not available")
        if not ctx.tier.discord_role_id:
            return CallResult.fail(f"Tier {ctx.tier.id} has no Discord role")
        if not ctx.member.discord_id:
            return CallResult.fail(f"Member {ctx.member.id} has no connected Discord account")
        return ctx.server.discord_id, ctx.member.discord_id, ctx.tier.discord_role_id

    async def _record(
        self,
        ctx: SubscriptionContext,
        action: Activity,
        result: CallResult,
        stage: Optional[str],
        actor_type: ActorType,
        actor_id: Optional[str],
    ) -> None:
        details = {
            "role_id": ctx.tier.discord_role_id,
            "tier_name": ctx.tier.name,
            "member_discord_id": ctx.member.discord_id,
        }
        if not result.success:
            details["error"] = result.error
            details["status"] = result.status
            details["stage"] = stage

        await self.activity.record(
            ctx.subscription.id, action, details, actor_type=actor_type, actor_id=actor_id
        )
