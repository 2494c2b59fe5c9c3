"""
Nudge exception hierarchy.

Every error in the system inherits from NudgeError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        await store.mark_sent(item_id)
    except StorageError as e:
        # Persistence unavailable: abort this pass, next tick retries
    except NudgeError as e:
        # Handle any Nudge error
"""


class NudgeError(Exception):
    """Base exception for all Nudge errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Layer 0: Core Errors ━━━


class ConfigError(NudgeError):
    """Configuration is invalid, missing, or malformed."""

    pass


class ValidationError(NudgeError):
    """A scheduling request or preference payload was rejected at the boundary."""

    def __init__(
        self,
        message: str,
        field: str = "",
        details: dict | None = None,
    ):
        self.field = field
        super().__init__(message, details)


# ━━━ Layer 1: Provider Errors ━━━


class StorageError(NudgeError):
    """Store backend failure: unreadable file, database errors, etc."""

    pass


class TransportError(NudgeError):
    """Push transport is misconfigured or unusable."""

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        details: dict | None = None,
    ):
        self.retryable = retryable
        super().__init__(message, details)


# ━━━ Layer 2: System Errors ━━━


class DispatchError(NudgeError):
    """A delivery pass could not be completed."""

    def __init__(
        self,
        message: str,
        queue: str = "",
        details: dict | None = None,
    ):
        self.queue = queue
        super().__init__(message, details)
