"""Member-facing direct message text.

Pure functions, no Discord or database state.
"""

from typing import Optional


def format_amount(amount_cents: int, currency: str) -> str:
    """Render a minor-unit amount, e.g. ``150000 IDR`` cents -> ``1500.00 IDR``."""
    return f"{amount_cents / 100:.2f} {currency}"


def format_payment_success_dm(tier_name: str, server_name: str) -> str:
    """DM sent after the paid role was granted."""
    return (
        f"\N{PARTY POPPER} Payment successful! You've been granted the "
        f"**{tier_name}** role on {server_name}."
    )


def format_payment_failed_dm(server_name: str, reason: Optional[str] = None) -> str:
    """DM sent when a payment attempt failed."""
    message = f"Your payment for {server_name} could not be processed."
    if reason:
        message += f" Reason: {reason}."
    return message + " Please try again or contact the server owner if the problem persists."
