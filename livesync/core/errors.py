"""
Error taxonomy for the live synchronization layer.

Every error carries an ErrorCategory so callers (UI, CLI) can decide how to
surface it without matching on concrete classes:

- TRANSIENT_NETWORK: a fetch/update call failed; retried by the next trigger
- CHANNEL_DEGRADED:  a push channel timed out or errored; drives backoff/polling
- NOT_FOUND:         a session code did not resolve; terminal for the view
- VALIDATION:        blank required input; rejected before any network call
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    CHANNEL_DEGRADED = "CHANNEL_DEGRADED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    INTERNAL = "INTERNAL"


class LiveSyncError(Exception):
    """Base error for the live synchronization layer."""

    category: ErrorCategory = ErrorCategory.INTERNAL


class TransientNetworkError(LiveSyncError):
    """A store operation failed; safe to retry later."""

    category = ErrorCategory.TRANSIENT_NETWORK

    def __init__(
        self,
        operation: str,
        kind: str,
        cause: Optional[BaseException] = None,
        detail: Optional[str] = None,
    ):
        self.operation = operation
        self.kind = kind
        self.cause = cause
        reason = detail if detail is not None else (str(cause) if cause is not None else "")
        suffix = f": {reason}" if reason else ""
        super().__init__(f"{operation} on '{kind}' failed{suffix}")


class StoreRequestError(TransientNetworkError):
    """The remote store answered with an error status."""

    def __init__(self, operation: str, kind: str, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(operation, kind, detail=f"HTTP {status_code}: {body[:200]}")


class ChannelDegradedError(LiveSyncError):
    """A push channel could not be established or was lost."""

    category = ErrorCategory.CHANNEL_DEGRADED

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Channel for '{kind}' degraded: {reason}")


class DuplicateChannelError(ChannelDegradedError):
    """A subscription name is already in use by a live channel."""

    def __init__(self, kind: str, name: str):
        self.name = name
        super().__init__(kind, f"subscription name '{name}' already in use")


class RowNotFoundError(LiveSyncError):
    """A row addressed by id does not exist in the store."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, kind: str, row_id: str):
        self.kind = kind
        self.row_id = row_id
        super().__init__(f"No '{kind}' row with id '{row_id}'")


class SessionNotFoundError(LiveSyncError):
    """A session code does not resolve to an active session."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Session '{code}' not found")


class InputValidationError(LiveSyncError):
    """A required input is empty or malformed."""

    category = ErrorCategory.VALIDATION

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class NotAttachedError(LiveSyncError):
    """An operation needs an active session attachment."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"'{operation}' requires an attached session")


def require_text(field: str, value: Optional[str]) -> str:
    """Return the trimmed value or raise InputValidationError if blank."""
    if value is None or not str(value).strip():
        raise InputValidationError(field, "must not be blank")
    return str(value).strip()
