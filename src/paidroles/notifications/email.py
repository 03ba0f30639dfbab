"""Transactional email via Resend."""

import asyncio
import html
import logging
from typing import Optional

import resend

from paidroles.config.settings import AppConfig, get_config
from paidroles.discord_bot.formatter import format_amount
from paidroles.errors import CallResult

logger = logging.getLogger(__name__)

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .success { background-color: #d4edda; padding: 15px; border-radius: 4px; margin: 20px 0; }
    .error { background-color: #f8d7da; padding: 15px; border-radius: 4px; margin: 20px 0; }
    .button { display: inline-block; padding: 12px 24px; background-color: #5865F2;
              color: white; text-decoration: none; border-radius: 4px; }
    .footer { margin-top: 30px; font-size: 12px; color: #666; }
"""


def _page(body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><style>"
        f"{_STYLE}"
        "</style></head><body><div class=\"container\">"
        f"{body}"
        "</div></body></html>"
    )


def render_payment_success(tier_name: str, amount_cents: int, currency: str) -> str:
    """HTML body for the subscription-activated email."""
    return _page(
        "<h2>Payment Successful!</h2>"
        "<div class=\"success\"><p>Your subscription has been activated successfully.</p></div>"
        "<h3>Subscription Details:</h3><ul>"
        f"<li><strong>Tier:</strong> {html.escape(tier_name)}</li>"
        f"<li><strong>Amount:</strong> {html.escape(format_amount(amount_cents, currency))}</li>"
        "</ul><p>You can now access all the benefits of your subscription.</p>"
        "<div class=\"footer\"><p>Thank you for your subscription!</p></div>"
    )


def render_payment_failed(app_url: str, reason: Optional[str] = None) -> str:
    """HTML body for the payment-failed email."""
    reason_html = f"<p><strong>Reason:</strong> {html.escape(reason)}</p>" if reason else ""
    return _page(
        "<h2>Payment Failed</h2>"
        f"<div class=\"error\"><p>Your payment could not be processed.</p>{reason_html}</div>"
        "<p>Please try again or contact support if the problem persists.</p>"
        f"<p><a href=\"{html.escape(app_url)}/pricing\" class=\"button\">Try Again</a></p>"
        "<div class=\"footer\"><p>If you need help, please contact our support team.</p></div>"
    )


class EmailSender:
    """Sends email through the Resend API.

    The Resend SDK is synchronous, so sends run in a worker thread.
    """

    def __init__(self, config: Optional[AppConfig] = None):
        self.config = config or get_config()

    async def send_email(self, to: str, subject: str, body: str) -> CallResult:
        """Send one HTML email. Never raises."""
        api_key = self.config.resend_api_key.get_secret_value()
        if not api_key:
            logger.warning("resend_api_key is not set; skipping email")
            return CallResult.fail("Email not configured")

        try:
            response = await asyncio.to_thread(self._send, api_key, to, subject, body)
        except Exception as e:
            # The SDK raises its own error hierarchy as well as requests errors
            logger.error(f"Failed to send email '{subject}' to {to}: {e}")
            return CallResult.fail(str(e))

        email_id = response.get("id") if isinstance(response, dict) else None
        logger.info(f"Sent email '{subject}' to {to} (id={email_id})")
        return CallResult.ok(id=email_id)

    def _send(self, api_key: str, to: str, subject: str, body: str):
        resend.api_key = api_key
        return resend.Emails.send(
            {
                "from": self.config.from_email,
                "to": to,
                "subject": subject,
                "html": body,
            }
        )

    async def send_payment_success(
        self, to: str, tier_name: str, amount_cents: int, currency: str
    ) -> CallResult:
        return await self.send_email(
            to,
            "Payment Successful - Subscription Activated",
            render_payment_success(tier_name, amount_cents, currency),
        )

    async def send_payment_failed(self, to: str, reason: Optional[str] = None) -> CallResult:
        return await self.send_email(
            to,
            "Payment Failed - Please Try Again",
            render_payment_failed(self.config.app_url, reason),
        )
