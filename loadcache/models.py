"""
Data models for the cache and load-coordination engine.
"""

import concurrent.futures
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from shared.errors import CacheEngineError


class EntryStatus(str, Enum):
    """Lifecycle states of a cache entry."""
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class LoadAction(str, Enum):
    """Kinds of diagnostic load events."""
    START = "start"
    END = "end"
    ERROR = "error"
    DISCARD = "discard"
    REFUSED = "refused"
    READINESS = "readiness"


@dataclass(frozen=True)
class ErrorInfo:
    """Terminal loader failure as stored on an entry."""
    message: str
    error_type: str
    code: Optional[str] = None
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)
    occurred_at: float = field(default_factory=time.time)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        code = exc.code if isinstance(exc, CacheEngineError) else None
        return cls(
            message=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
            code=code,
            cause=exc,
        )


@dataclass
class CacheEntry:
    """
    Mutable per-key state. Owned by ``CacheStore``; never handed out directly.
    """
    key: str
    ttl: float
    data: Any = None
    last_loaded_at: Optional[float] = None
    last_attempt_at: Optional[float] = None
    load_started_at: Optional[float] = None
    error: Optional[ErrorInfo] = None
    retry_count: int = 0
    status: EntryStatus = EntryStatus.IDLE
    generation: int = 0
    in_flight: Optional[concurrent.futures.Future] = None


@dataclass(frozen=True)
class EntrySnapshot:
    """Read-only view of an entry at one instant."""
    key: str
    data: Any
    status: EntryStatus
    last_loaded_at: Optional[float]
    ttl: float
    error: Optional[ErrorInfo]
    retry_count: int
    generation: int
    age: Optional[float]
    is_stale: bool

    @property
    def is_loading(self) -> bool:
        return self.status is EntryStatus.LOADING

    @property
    def has_data(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Dict[str, Any]:
        """Diagnostic row without the payload itself."""
        return {
            "key": self.key,
            "status": self.status.value,
            "age": round(self.age, 3) if self.age is not None else None,
            "ttl": self.ttl,
            "retry_count": self.retry_count,
            "generation": self.generation,
            "has_data": self.has_data,
            "has_error": self.error is not None,
            "error": self.error.message if self.error else None,
        }


@dataclass(frozen=True)
class Principal:
    """The authenticated party a readiness state speaks for."""
    principal_id: str
    role: Optional[str] = None
    email: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ReadinessState:
    """Readiness/authorization signal published by the session layer."""
    initialized: bool = False
    settling: bool = True
    principal: Optional[Principal] = None

    @property
    def principal_id(self) -> Optional[str]:
        return self.principal.principal_id if self.principal else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "settling": self.settling,
            "has_principal": self.principal is not None,
            "principal_id": self.principal_id,
            "role": self.principal.role if self.principal else None,
        }


@dataclass(frozen=True)
class LoadOptions:
    """Per-call overrides; ``None`` falls back to engine defaults."""
    force_refresh: bool = False
    ttl: Optional[float] = None
    max_retries: Optional[int] = None
    base_delay: Optional[float] = None


@dataclass(frozen=True)
class LoadEvent:
    """One entry in the diagnostic event ring."""
    timestamp: float
    key: str
    action: LoadAction
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "key": self.key,
            "action": self.action.value,
            "detail": dict(self.detail),
        }
