"""Discord collaborator: role changes, DMs and permission checks.

Wraps a connected ``discord.Client``. Network errors, 403 and 404 are
expected outcomes and come back as ``CallResult`` values; nothing here raises
into the webhook pipeline.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import aiohttp
import discord

from paidroles.config.settings import AppConfig
from paidroles.errors import CallResult

logger = logging.getLogger(__name__)

DM_FAILED = "DM_FAILED"


class _CallFailed(Exception):
    """Non-retryable failure raised inside an operation."""

    def __init__(self, error: str, status: Optional[int] = None):
        super().__init__(error)
        self.error = error
        self.status = status


class DiscordGateway:
    """Role and DM operations against Discord with bounded latency.

    Each attempt is capped by ``timeout``; transient failures (network,
    timeout, 5xx) are retried up to ``max_retries`` times, waiting
    ``attempt * backoff_seconds`` between attempts. 403 and 404 are final.
    """

    def __init__(
        self,
        client: discord.Client,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
    ):
        self.client = client
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_config(cls, client: discord.Client, config: AppConfig) -> "DiscordGateway":
        return cls(
            client,
            timeout=config.discord_request_timeout_seconds,
            max_retries=config.discord_max_retries,
            backoff_seconds=config.discord_retry_backoff_seconds,
        )

    async def assign_role(self, guild_id: str, user_id: str, role_id: str) -> CallResult:
        """Add ``role_id`` to the member. Adding a role the member already has succeeds."""

        async def op() -> CallResult:
            guild = await self._guild(guild_id)
            member = await self._member(guild, user_id)
            await member.add_roles(
                discord.Object(id=_snowflake(role_id)), reason="Subscription payment received"
            )
            return CallResult.ok()

        return await self._call(f"assign_role guild={guild_id} user={user_id}", op)

    async def remove_role(self, guild_id: str, user_id: str, role_id: str) -> CallResult:
        """Remove ``role_id`` from the member."""

        async def op() -> CallResult:
            guild = await self._guild(guild_id)
            member = await self._member(guild, user_id)
            await member.remove_roles(
                discord.Object(id=_snowflake(role_id)), reason="Subscription ended"
            )
            return CallResult.ok()

        return await self._call(f"remove_role guild={guild_id} user={user_id}", op)

    async def send_dm(self, user_id: str, text: str) -> CallResult:
        """Send a direct message. Members with DMs closed yield ``error == "DM_FAILED"``."""

        async def op() -> CallResult:
            uid = _snowflake(user_id)
            user = self.client.get_user(uid) or await self.client.fetch_user(uid)
            try:
                await user.send(text)
            except discord.Forbidden as e:
                raise _CallFailed(DM_FAILED, 403) from e
            return CallResult.ok()

        return await self._call(f"send_dm user={user_id}", op)

    async def validate_bot_permissions(
        self, guild_id: str, role_id: Optional[str] = None
    ) -> CallResult:
        """Confirm the bot can manage ``role_id`` in the guild.

        The bot needs Manage Roles (Administrator implies it) and, when a
        role is given, a top role strictly above it.
        """

        async def op() -> CallResult:
            guild = await self._guild(guild_id)
            me = guild.me
            if me is None:
                me = await guild.fetch_member(self.client.user.id)

            perms = me.guild_permissions
            if not (perms.administrator or perms.manage_roles):
                return CallResult.fail("Bot lacks required permissions (MANAGE_ROLES)", 403)

            if role_id is None:
                return CallResult.ok()

            rid = _snowflake(role_id)
            role = guild.get_role(rid)
            if role is None:
                role = discord.utils.get(await guild.fetch_roles(), id=rid)
            if role is None:
                return CallResult.fail(f"Role {role_id} not found in server", 404)
            if me.top_role <= role:
                return CallResult.fail(
                    f"Bot role is not above role {role.name} in the role hierarchy", 403
                )
            return CallResult.ok()

        return await self._call(f"validate_bot_permissions guild={guild_id}", op)

    async def _guild(self, guild_id: str) -> discord.Guild:
        gid = _snowflake(guild_id)
        return self.client.get_guild(gid) or await self.client.fetch_guild(gid)

    async def _member(self, guild: discord.Guild, user_id: str) -> discord.Member:
        uid = _snowflake(user_id)
        return guild.get_member(uid) or await guild.fetch_member(uid)

    async def _call(self, label: str, op: Callable[[], Awaitable[CallResult]]) -> CallResult:
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(op(), timeout=self.timeout)
            except _CallFailed as e:
                return CallResult.fail(e.error, e.status)
            except discord.Forbidden as e:
                logger.warning(f"Discord {label}: forbidden ({e.text})")
                return CallResult.fail("Bot lacks permission for this operation", 403)
            except discord.NotFound as e:
                logger.warning(f"Discord {label}: not found ({e.text})")
                return CallResult.fail("Member not found or bot not in server", 404)
            except discord.HTTPException as e:
                if e.status < 500:
                    return CallResult.fail(f"Discord API error: {e.status} {e.text}", e.status)
                result = CallResult.fail(f"Discord API error: {e.status} {e.text}", e.status)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                result = CallResult.fail(f"Discord request failed: {e!r}")

            if attempt == attempts:
                return result

            delay = attempt * self.backoff_seconds
            logger.warning(
                f"Discord {label} failed ({result.error}), "
                f"retry {attempt}/{attempts - 1} in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

        return CallResult.fail("no attempt made")


def _snowflake(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise _CallFailed(f"Invalid Discord id: {value!r}", 400) from e
