"""Tests for member notifications (DM with email fallback)."""

from dataclasses import replace
from unittest.mock import patch

import pytest
from pydantic import SecretStr

from paidroles.db.models import SubscriptionStatus
from paidroles.discord_bot.formatter import (
    format_amount,
    format_payment_failed_dm,
    format_payment_success_dm,
)
from paidroles.errors import CallResult
from paidroles.notifications.dispatcher import NotificationDispatcher
from paidroles.notifications.email import (
    EmailSender,
    render_payment_failed,
    render_payment_success,
)


async def _context(world, **member_changes):
    sub, _ = await world.add_subscription(SubscriptionStatus.ACTIVE)
    ctx = await world.subscriptions.get_context(sub.id)
    if member_changes:
        ctx.member = replace(ctx.member, **member_changes)
    return ctx


def _dispatcher(world):
    return NotificationDispatcher(world.discord, world.email, world.activity)


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_dm_delivered(self, world):
        ctx = await _context(world)

        result = await _dispatcher(world).payment_succeeded(ctx)

        assert result.delivered
        assert result.channel == "dm"
        [(_, user_id, text)] = world.discord.calls_to("send_dm")
        assert user_id == "900000000000000555"
        assert "**Gold**" in text
        assert "Guild Hall" in text
        assert world.email.sent == []

    @pytest.mark.asyncio
    async def test_email_fallback_when_dm_fails(self, world):
        world.discord.dm_result = CallResult.fail("DM_FAILED", 403)
        ctx = await _context(world)

        result = await _dispatcher(world).payment_failed(ctx, reason="payment deny")

        assert result.channel == "email"
        assert not result.dm.success
        assert world.email.sent == [("payment_failed", "member@example.com", "payment deny")]
        assert world.activity_logs.rows == []

    @pytest.mark.asyncio
    async def test_email_only_member(self, world):
        ctx = await _context(world, discord_id=None)

        result = await _dispatcher(world).payment_succeeded(ctx)

        assert result.channel == "email"
        assert world.discord.calls == []

    @pytest.mark.asyncio
    async def test_no_channel_records_failure(self, world):
        world.discord.dm_result = CallResult.fail("DM_FAILED", 403)
        ctx = await _context(world, email=None)

        result = await _dispatcher(world).payment_succeeded(ctx)

        assert not result.delivered
        [entry] = world.activity_logs.rows
        assert entry.action == "notification_failed"
        assert entry.details == {
            "notification": "payment_success",
            "dm_error": "DM_FAILED",
            "email_error": "no email on file",
        }

    @pytest.mark.asyncio
    async def test_both_channels_fail(self, world):
        world.discord.dm_result = CallResult.fail("DM_FAILED", 403)
        world.email.result = CallResult.fail("Email not configured")
        ctx = await _context(world)

        result = await _dispatcher(world).payment_failed(ctx)

        assert not result.delivered
        assert world.activity_logs.rows[0].details["email_error"] == "Email not configured"


class TestFormatting:
    def test_format_amount(self):
        assert format_amount(15000000, "IDR") == "150000.00 IDR"
        assert format_amount(999, "USD") == "9.99 USD"

    def test_success_dm(self):
        text = format_payment_success_dm("Gold", "Guild Hall")
        assert "Payment successful" in text
        assert "**Gold** role on Guild Hall" in text

    def test_failed_dm_with_and_without_reason(self):
        assert "Reason: payment expire." in format_payment_failed_dm("Guild Hall", "payment expire")
        assert "Reason" not in format_payment_failed_dm("Guild Hall")

    def test_email_bodies_escape_input(self):
        success = render_payment_success("<b>Gold</b>", 15000000, "IDR")
        assert "&lt;b&gt;Gold&lt;/b&gt;" in success
        assert "150000.00 IDR" in success

        failed = render_payment_failed("https://example.com", "card <declined>")
        assert "card &lt;declined&gt;" in failed
        assert "https://example.com/pricing" in failed


class TestEmailSender:
    @pytest.mark.asyncio
    async def test_not_configured(self, config):
        sender = EmailSender(config)

        result = await sender.send_payment_failed("member@example.com")

        assert not result.success
        assert result.error == "Email not configured"

    @pytest.mark.asyncio
    async def test_sends_through_resend(self, config):
        config = config.model_copy(update={"resend_api_key": SecretStr("re_test")})
        sender = EmailSender(config)

        with patch(
            "paidroles.notifications.email.resend.Emails.send", return_value={"id": "email-1"}
        ) as send:
            result = await sender.send_payment_success("member@example.com", "Gold", 15000000, "IDR")

        assert result.success
        assert result.data["id"] == "email-1"
        params = send.call_args.args[0]
        assert params["to"] == "member@example.com"
        assert params["from"] == config.from_email
        assert params["subject"] == "Payment Successful - Subscription Activated"
        assert "Gold" in params["html"]

    @pytest.mark.asyncio
    async def test_provider_error_returned_as_failure(self, config):
        config = config.model_copy(update={"resend_api_key": SecretStr("re_test")})
        sender = EmailSender(config)

        with patch(
            "paidroles.notifications.email.resend.Emails.send",
            side_effect=RuntimeError("provider down"),
        ):
            result = await sender.send_email("member@example.com", "Hi", "<p>hi</p>")

        assert not result.success
        assert result.error == "provider down"
