"""
Operation outcomes returned by the sync facade.

Every facade call returns an OperationResult, including the calls that
decide to do nothing, so callers and tests can tell "skipped because
offline" apart from "sent".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Reason codes used when the backend supplies none
REASON_OFFLINE = "OFFLINE"
REASON_NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
REASON_REQUEST_IN_PROGRESS = "REQUEST_IN_PROGRESS"
REASON_REQUEST_FAILED = "REQUEST_FAILED"
REASON_TRANSPORT_ERROR = "TRANSPORT_ERROR"
REASON_INVALID_CONTENT = "INVALID_CONTENT"  # File content that can't be sent as text
REASON_MALFORMED_RESPONSE = "MALFORMED_RESPONSE"  # 200 whose body lacks the expected fields


class OperationStatus(Enum):
    """How a facade call was handled."""

    SENT_REALTIME = "sent_realtime"  # Fire-and-forget over the realtime channel
    COMPLETED = "completed"  # Request/reply call returned status 200
    SKIPPED_OFFLINE = "skipped_offline"
    SKIPPED_NOT_AUTHENTICATED = "skipped_not_authenticated"
    REQUEST_IN_PROGRESS = "request_in_progress"  # Rejected by the single-flight gate
    FAILED = "failed"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a single facade call."""

    status: OperationStatus
    reason: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True when the operation was sent or completed."""
        return self.status in (OperationStatus.SENT_REALTIME, OperationStatus.COMPLETED)

    @property
    def skipped(self) -> bool:
        return self.status in (
            OperationStatus.SKIPPED_OFFLINE,
            OperationStatus.SKIPPED_NOT_AUTHENTICATED,
        )

    @classmethod
    def sent(cls) -> OperationResult:
        return cls(OperationStatus.SENT_REALTIME)

    @classmethod
    def completed(cls, data: dict[str, Any] | None = None) -> OperationResult:
        return cls(OperationStatus.COMPLETED, data=data or {})

    @classmethod
    def offline(cls) -> OperationResult:
        return cls(OperationStatus.SKIPPED_OFFLINE, REASON_OFFLINE)

    @classmethod
    def not_authenticated(cls) -> OperationResult:
        return cls(OperationStatus.SKIPPED_NOT_AUTHENTICATED, REASON_NOT_AUTHENTICATED)

    @classmethod
    def busy(cls) -> OperationResult:
        return cls(OperationStatus.REQUEST_IN_PROGRESS, REASON_REQUEST_IN_PROGRESS)

    @classmethod
    def failed(cls, reason: str | None, data: dict[str, Any] | None = None) -> OperationResult:
        return cls(OperationStatus.FAILED, reason or REASON_REQUEST_FAILED, data or {})
