"""Gateway status vocabulary mapping."""

from dataclasses import dataclass
from typing import Optional

from paidroles.db.models import TransactionStatus

STATUS_MAP: dict[str, TransactionStatus] = {
    "pending": TransactionStatus.PENDING,
    "authorize": TransactionStatus.PENDING,
    "settlement": TransactionStatus.SUCCESS,
    "capture": TransactionStatus.SUCCESS,
    "deny": TransactionStatus.FAILED,
    "cancel": TransactionStatus.FAILED,
    "expire": TransactionStatus.FAILED,
    "failure": TransactionStatus.FAILED,
    "refund": TransactionStatus.REFUNDED,
    "partial_refund": TransactionStatus.REFUNDED,
}


@dataclass(frozen=True)
class StatusMapping:
    """Internal status for a gateway status, if the gateway status is known."""

    internal_status: Optional[TransactionStatus]
    is_valid: bool


def map_external_status(gateway_status: Optional[str]) -> StatusMapping:
    """Translate a gateway ``transaction_status`` into the internal vocabulary.

    Unknown statuses map to ``is_valid=False``; callers acknowledge them as
    no-ops since the gateway may add statuses at any time.
    """
    internal = STATUS_MAP.get((gateway_status or "").strip().lower())
    return StatusMapping(internal_status=internal, is_valid=internal is not None)
