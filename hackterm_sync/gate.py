"""Single-flight gate for request/reply calls.

At most one request/reply call may be outstanding. A second caller is
rejected, never queued; it is up to the caller to try again later.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class RequestKind(Enum):
    """Request/reply operations that go through the gate."""

    REGISTER = "register"
    RECOVER = "recover"
    CHECK_HANDLE = "check_handle"
    CHECK_EMAIL = "check_email"
    FILE_WRITE = "file_write"
    FILE_DELETE = "file_delete"
    MKDIR = "mkdir"
    RMDIR = "rmdir"
    VERSIONS = "versions"
    RESTORE = "restore"
    FETCH_FILESYSTEM = "fetch_filesystem"
    PUSH_FILESYSTEM = "push_filesystem"


@dataclass(frozen=True)
class PendingRequest:
    """The single live request/reply call."""

    kind: RequestKind
    issued_at: float = field(default_factory=time.monotonic)

    @property
    def age(self) -> float:
        return time.monotonic() - self.issued_at


class RequestGate:
    """Mutual exclusion for request/reply calls.

    Every successful try_acquire() must be paired with exactly one
    release(), on success, error or timeout alike:

        if not gate.try_acquire(RequestKind.VERSIONS):
            return OperationResult.busy()
        try:
            ...
        finally:
            gate.release()
    """

    def __init__(self) -> None:
        self._pending: PendingRequest | None = None

    @property
    def pending(self) -> PendingRequest | None:
        return self._pending

    @property
    def is_busy(self) -> bool:
        return self._pending is not None

    def try_acquire(self, kind: RequestKind) -> bool:
        """Mark a request pending. Returns False if one already is."""
        if self._pending is not None:
            logger.info(
                "Request %s rejected: %s still pending after %.1fs",
                kind.value,
                self._pending.kind.value,
                self._pending.age,
            )
            return False
        self._pending = PendingRequest(kind)
        return True

    def release(self) -> None:
        """Clear the pending marker."""
        if self._pending is None:
            logger.warning("RequestGate.release() called with no pending request")
            return
        logger.debug(
            "Request %s released after %.3fs", self._pending.kind.value, self._pending.age
        )
        self._pending = None
