"""Subscription lifecycle.

State machine, activity audit trail and the abandoned-checkout sweep.
"""

from paidroles.subscriptions.activity import ActivityLog
from paidroles.subscriptions.state import (
    ALLOWED_TRANSITIONS,
    can_transition,
    check_transition,
    is_expiring_soon,
    transition,
)
from paidroles.subscriptions.sweeper import SweepResult, authorize_trigger, sweep_pending

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ActivityLog",
    "SweepResult",
    "authorize_trigger",
    "can_transition",
    "check_transition",
    "is_expiring_soon",
    "sweep_pending",
    "transition",
]
