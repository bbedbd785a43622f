"""
Shared error handling for the loadcache engine.
"""

from typing import Dict, Any, Optional


class CacheEngineError(Exception):
    """Base exception for the loadcache engine."""

    retryable = True

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class TransientError(CacheEngineError):
    """Backend or network failure that may succeed on retry."""

    def __init__(self, message: str = "Transient failure", cause: Optional[BaseException] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_ERROR", message, details)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class RefusedError(CacheEngineError):
    """The readiness gate refused a real fetch. Never retried, never mutates an entry."""

    retryable = False

    def __init__(self, key: str, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("LOAD_REFUSED", f"Load of '{key}' refused: {reason}", details)
        self.key = key
        self.reason = reason


class LoadFailedError(CacheEngineError):
    """A key is held in the failed state and will not refetch until it expires or is refreshed."""

    retryable = False

    def __init__(self, key: str, error_info: Any, retry_count: int = 0):
        message = getattr(error_info, "message", None) or "Load failed"
        super().__init__(
            "LOAD_FAILED",
            f"Load of '{key}' failed: {message}",
            {"retry_count": retry_count, "error_type": getattr(error_info, "error_type", None)},
        )
        self.key = key
        self.error_info = error_info
        self.retry_count = retry_count


class ConfigurationError(CacheEngineError):
    """Invalid engine configuration."""

    retryable = False

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class StaleCompletionDiscard:
    """Record of a completed load dropped because its generation was superseded.

    Not an exception: discards are logged and recorded, never surfaced.
    """

    __slots__ = ("key", "captured_generation", "current_generation", "outcome")

    def __init__(self, key: str, captured_generation: int, current_generation: int, outcome: str):
        self.key = key
        self.captured_generation = captured_generation
        self.current_generation = current_generation
        self.outcome = outcome

    def to_detail(self) -> Dict[str, Any]:
        return {
            "captured_generation": self.captured_generation,
            "current_generation": self.current_generation,
            "outcome": self.outcome,
        }
