"""Tests for the Discord collaborator wrapper."""

import asyncio
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from paidroles.discord_bot.gateway import DM_FAILED, DiscordGateway

GUILD_ID = "900000000000000001"
USER_ID = "900000000000000555"
ROLE_ID = "900000000000000100"


@dataclass(order=True)
class _Role:
    position: int
    name: str = "role"


def _http_error(cls, status: int, text: str):
    return cls(MagicMock(status=status, reason="error"), text)


def _client(guild=None, member=None):
    client = MagicMock()
    guild = guild or MagicMock()
    member = member or MagicMock()
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    guild.get_member.return_value = member
    client.get_guild.return_value = guild
    return client, guild, member


def _gateway(client, **kwargs):
    kwargs.setdefault("backoff_seconds", 0)
    return DiscordGateway(client, **kwargs)


class TestRoles:
    @pytest.mark.asyncio
    async def test_assign_role(self):
        client, _, member = _client()

        result = await _gateway(client).assign_role(GUILD_ID, USER_ID, ROLE_ID)

        assert result.success
        client.get_guild.assert_called_once_with(int(GUILD_ID))
        [role] = member.add_roles.call_args.args
        assert role.id == int(ROLE_ID)

    @pytest.mark.asyncio
    async def test_remove_role(self):
        client, _, member = _client()

        result = await _gateway(client).remove_role(GUILD_ID, USER_ID, ROLE_ID)

        assert result.success
        member.remove_roles.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_member_fetched_when_not_cached(self):
        client, guild, member = _client()
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(return_value=member)

        result = await _gateway(client).assign_role(GUILD_ID, USER_ID, ROLE_ID)

        assert result.success
        guild.fetch_member.assert_awaited_once_with(int(USER_ID))

    @pytest.mark.asyncio
    async def test_forbidden_is_final(self):
        client, _, member = _client()
        member.add_roles.side_effect = _http_error(discord.Forbidden, 403, "Missing Permissions")

        result = await _gateway(client).assign_role(GUILD_ID, USER_ID, ROLE_ID)

        assert not result.success
        assert result.status == 403
        assert member.add_roles.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_member(self):
        client, guild, _ = _client()
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(
            side_effect=_http_error(discord.NotFound, 404, "Unknown Member")
        )

        result = await _gateway(client).assign_role(GUILD_ID, USER_ID, ROLE_ID)

        assert result.status == 404
        assert guild.fetch_member.await_count == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        client, _, member = _client()
        member.add_roles.side_effect = [
            _http_error(discord.HTTPException, 503, "Service Unavailable"),
            None,
        ]

        result = await _gateway(client, max_retries=2).assign_role(GUILD_ID, USER_ID, ROLE_ID)

        assert result.success
        assert member.add_roles.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        client, _, member = _client()
        member.add_roles.side_effect = _http_error(discord.HTTPException, 502, "Bad Gateway")

        result = await _gateway(client, max_retries=2).assign_role(GUILD_ID, USER_ID, ROLE_ID)

        assert not result.success
        assert result.status == 502
        assert member.add_roles.await_count == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        client, _, member = _client()
        member.add_roles.side_effect = _http_error(discord.HTTPException, 400, "Bad Request")

        result = await _gateway(client, max_retries=2).assign_role(GUILD_ID, USER_ID, ROLE_ID)

        assert result.status == 400
        assert member.add_roles.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_bounded(self):
        client, _, member = _client()

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        member.add_roles.side_effect = hang

        result = await _gateway(client, timeout=0.05, max_retries=0).assign_role(
            GUILD_ID, USER_ID, ROLE_ID
        )

        assert not result.success
        assert result.error.startswith("Discord request failed")

    @pytest.mark.asyncio
    async def test_invalid_snowflake(self):
        client, _, _ = _client()

        result = await _gateway(client).assign_role("not-a-number", USER_ID, ROLE_ID)

        assert result.status == 400
        client.get_guild.assert_not_called()


class TestDirectMessages:
    @pytest.mark.asyncio
    async def test_send_dm(self):
        client = MagicMock()
        user = MagicMock()
        user.send = AsyncMock()
        client.get_user.return_value = user

        result = await _gateway(client).send_dm(USER_ID, "hello")

        assert result.success
        user.send.assert_awaited_once_with("hello")

    @pytest.mark.asyncio
    async def test_dms_closed(self):
        client = MagicMock()
        user = MagicMock()
        user.send = AsyncMock(
            side_effect=_http_error(discord.Forbidden, 403, "Cannot send messages to this user")
        )
        client.get_user.return_value = user

        result = await _gateway(client).send_dm(USER_ID, "hello")

        assert not result.success
        assert result.error == DM_FAILED
        assert result.status == 403


class TestPermissionCheck:
    def _guild(self, *, admin=False, manage_roles=True, top=10, role_position=5):
        guild = MagicMock()
        guild.me.guild_permissions = MagicMock(administrator=admin, manage_roles=manage_roles)
        guild.me.top_role = _Role(top, "Bot")
        guild.get_role.return_value = _Role(role_position, "Gold")
        return guild

    @pytest.mark.asyncio
    async def test_manage_roles_and_hierarchy_ok(self):
        client, _, _ = _client(guild=self._guild())

        result = await _gateway(client).validate_bot_permissions(GUILD_ID, ROLE_ID)

        assert result.success

    @pytest.mark.asyncio
    async def test_administrator_implies_manage_roles(self):
        client, _, _ = _client(guild=self._guild(admin=True, manage_roles=False))

        result = await _gateway(client).validate_bot_permissions(GUILD_ID)

        assert result.success

    @pytest.mark.asyncio
    async def test_missing_manage_roles(self):
        client, _, _ = _client(guild=self._guild(manage_roles=False))

        result = await _gateway(client).validate_bot_permissions(GUILD_ID, ROLE_ID)

        assert not result.success
        assert "MANAGE_ROLES" in result.error
        assert result.status == 403

    @pytest.mark.asyncio
    async def test_role_above_bot(self):
        client, _, _ = _client(guild=self._guild(top=5, role_position=5))

        result = await _gateway(client).validate_bot_permissions(GUILD_ID, ROLE_ID)

        assert not result.success
        assert "hierarchy" in result.error

    @pytest.mark.asyncio
    async def test_role_missing(self):
        guild = self._guild()
        guild.get_role.return_value = None
        guild.fetch_roles = AsyncMock(return_value=[])
        client, _, _ = _client(guild=guild)

        result = await _gateway(client).validate_bot_permissions(GUILD_ID, ROLE_ID)

        assert result.status == 404


def test_from_config(config):
    gateway = DiscordGateway.from_config(MagicMock(), config)

    assert gateway.timeout == config.discord_request_timeout_seconds
    assert gateway.max_retries == config.discord_max_retries
