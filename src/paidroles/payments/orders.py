"""Gateway order id convention: ``<prefix>-<subscriptionId>-<epoch millis>``."""

import time
from typing import Optional

DEFAULT_PREFIX = "SUB"


def generate_order_id(
    subscription_id: str,
    prefix: str = DEFAULT_PREFIX,
    now_ms: Optional[int] = None,
) -> str:
    """Build a gateway order id for a subscription's payment attempt."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{subscription_id}-{now_ms}"


def parse_order_id(order_id: Optional[str], prefix: str = DEFAULT_PREFIX) -> Optional[str]:
    """Recover the subscription id from an order id.

    A trailing all-digit segment is the attempt timestamp and is dropped;
    ``<prefix>-<id>`` without a timestamp is accepted too.

    Returns:
        The subscription id, or None if ``order_id`` does not follow the
        convention.
    """
    if not order_id:
        return None

    head = f"{prefix}-"
    if not order_id.startswith(head):
        return None

    parts = order_id[len(head):].split("-")
    if len(parts) > 1 and parts[-1].isdigit():
        parts = parts[:-1]

    subscription_id = "-".join(parts)
    return subscription_id or None
