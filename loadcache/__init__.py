"""
Client-side cache and load-coordination engine.

Fetches, caches, deduplicates and invalidates per-resource data behind an
asynchronously settling readiness gate. Prefer one engine per session
layer and explicit invalidation over long TTLs.
"""
from .models import (
    EntrySnapshot,
    EntryStatus,
    ErrorInfo,
    LoadAction,
    LoadEvent,
    LoadOptions,
    Principal,
    ReadinessState,
)
from .store import CacheStore
from .gate import Gate, GateDecision, any_principal, role_predicate
from .debounce import DebouncedStateReducer
from .coordinator import LoadCoordinator
from .invalidator import Invalidator
from .recorder import EventRecorder
from .monitor import LoadMonitor
from .engine import LoadEngine

__all__ = [
    # Models
    "EntrySnapshot",
    "EntryStatus",
    "ErrorInfo",
    "LoadAction",
    "LoadEvent",
    "LoadOptions",
    "Principal",
    "ReadinessState",
    # Components
    "CacheStore",
    "Gate",
    "GateDecision",
    "any_principal",
    "role_predicate",
    "DebouncedStateReducer",
    "LoadCoordinator",
    "Invalidator",
    "EventRecorder",
    "LoadMonitor",
    # Facade
    "LoadEngine",
]
