"""Webhook signature and freshness verification.

Both checks are pure: no network or store access, and any malformed input
yields ``False`` rather than an exception.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

# Gateway notification timestamps look like "2024-05-01 13:45:10"
GATEWAY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def compute_signature(order_id: str, status_code: str, gross_amount: str, secret: str) -> str:
    """Hex SHA-512 over ``order_id + status_code + gross_amount + secret``."""
    raw = f"{order_id}{status_code}{gross_amount}{secret}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    received_signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """Check a gateway notification signature.

    Args:
        order_id: Gateway order id from the payload
        status_code: Gateway status code from the payload
        gross_amount: Gross amount exactly as sent (e.g. "100000.00")
        received_signature: Signature received with the delivery
        secret: Shared server key

    Returns:
        True only if the signature matches; False for any missing or
        malformed input.
    """
    if not secret or not received_signature:
        return False

    try:
        expected = compute_signature(order_id, status_code, gross_amount, secret)
        return hmac.compare_digest(expected, received_signature.strip().lower())
    except (TypeError, ValueError, UnicodeError) as e:
        logger.warning(f"Signature verification failed on malformed input: {e}")
        return False


def parse_gateway_time(value: str, tz: str = "Asia/Jakarta") -> Optional[datetime]:
    """Parse a gateway timestamp into an aware datetime.

    Accepts ISO 8601 and the gateway's ``YYYY-MM-DD HH:MM:SS`` format. Naive
    values are interpreted in ``tz``. Returns None if unparseable.
    """
    if not value:
        return None

    parsed: Optional[datetime] = None
    for parser in (datetime.fromisoformat, lambda v: datetime.strptime(v, GATEWAY_TIME_FORMAT)):
        try:
            parsed = parser(value.strip().replace("Z", "+00:00"))
            break
        except (TypeError, ValueError):
            continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(tz))
    return parsed


def is_fresh(
    transaction_time: str,
    *,
    max_age: timedelta = timedelta(hours=24),
    now: Optional[datetime] = None,
    tz: str = "Asia/Jakarta",
) -> bool:
    """True if ``transaction_time`` is no older than ``max_age``.

    Unparseable timestamps are not fresh.
    """
    parsed = parse_gateway_time(transaction_time, tz)
    if parsed is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - parsed <= max_age
