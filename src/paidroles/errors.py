"""Error taxonomy shared by the webhook pipeline, store and collaborators."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """How a failure is classified and surfaced."""

    REJECTED_INPUT = "rejected_input"  # 400, no ledger write
    UNVERIFIED = "unverified"  # 400/401, ledger write, no transition
    UNRECOGNIZED = "unrecognized"  # 200 no-op
    INVALID_TRANSITION = "invalid_transition"  # 200, no side effect
    COLLABORATOR_FAILURE = "collaborator_failure"  # activity log only
    STORAGE_FAILURE = "storage_failure"  # 5xx, gateway retries


class PaidRolesError(Exception):
    """Base class for application errors."""

    kind: ErrorKind = ErrorKind.REJECTED_INPUT


class InvalidTransition(PaidRolesError):
    """Raised when a subscription status change is not allowed."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, source: str, target: str, reason: str | None = None):
        self.source = source
        self.target = target
        self.reason = reason
        message = f"Invalid transition from {source} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StorageError(PaidRolesError):
    """Raised when the durable store cannot complete an operation."""

    kind = ErrorKind.STORAGE_FAILURE


@dataclass
class CallResult:
    """Outcome of a call to an external collaborator (Discord, email, gateway).

    Collaborator failures are ordinary results, never exceptions. ``status``
    carries the remote HTTP status when one was received.
    """

    success: bool
    error: Optional[str] = None
    status: Optional[int] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "CallResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, status: Optional[int] = None) -> "CallResult":
        return cls(success=False, error=error, status=status)
