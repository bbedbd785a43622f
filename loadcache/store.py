"""
Authoritative in-memory table of cache entries.

Only ``LoadCoordinator`` and ``Invalidator`` call the mutating methods; every
other reader goes through ``peek``/``snapshots`` or a subscription.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set

from shared.logging import get_logger

from .models import CacheEntry, EntrySnapshot, EntryStatus, ErrorInfo

WILDCARD = "*"

Subscriber = Callable[[str, EntrySnapshot], None]


class CacheStore:
    """Keyed table of ``CacheEntry`` with change notifications.

    All mutations happen under a re-entrant lock, which is also exposed as
    ``lock`` so the coordinator can make its check-and-claim atomic.
    """

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self.clock = clock
        self.lock = threading.RLock()
        self.logger = get_logger("loadcache.store")

        self._entries: Dict[str, CacheEntry] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _entry(self, key: str) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, ttl=self.default_ttl)
            self._entries[key] = entry
        return entry

    def _snapshot(self, entry: CacheEntry) -> EntrySnapshot:
        age = None
        if entry.last_loaded_at is not None:
            age = max(0.0, self.clock() - entry.last_loaded_at)
        return EntrySnapshot(
            key=entry.key,
            data=entry.data,
            status=entry.status,
            last_loaded_at=entry.last_loaded_at,
            ttl=entry.ttl,
            error=entry.error,
            retry_count=entry.retry_count,
            generation=entry.generation,
            age=age,
            is_stale=age is None or age > entry.ttl,
        )

    def get_entry(self, key: str) -> EntrySnapshot:
        """Snapshot of ``key``, creating an idle entry on first reference."""
        with self.lock:
            return self._snapshot(self._entry(key))

    peek = get_entry

    def get_in_flight(self, key: str) -> Optional[Any]:
        with self.lock:
            entry = self._entries.get(key)
            return entry.in_flight if entry else None

    def is_stale(self, key: str, ttl: Optional[float] = None) -> bool:
        with self.lock:
            entry = self._entry(key)
            if entry.last_loaded_at is None:
                return True
            limit = entry.ttl if ttl is None else ttl
            return self.clock() - entry.last_loaded_at > limit

    def is_failure_held(self, key: str, ttl: Optional[float] = None) -> bool:
        """True while a FAILED entry is younger than its TTL."""
        with self.lock:
            entry = self._entry(key)
            if entry.status is not EntryStatus.FAILED or entry.last_attempt_at is None:
                return False
            limit = entry.ttl if ttl is None else ttl
            return self.clock() - entry.last_attempt_at <= limit

    def keys(self) -> List[str]:
        with self.lock:
            return list(self._entries.keys())

    def snapshots(self) -> List[EntrySnapshot]:
        with self.lock:
            return [self._snapshot(entry) for entry in self._entries.values()]

    def in_flight_handles(self) -> Dict[str, Any]:
        with self.lock:
            return {
                key: entry.in_flight
                for key, entry in self._entries.items()
                if entry.in_flight is not None
            }

    def is_any_loading(self) -> bool:
        with self.lock:
            return any(entry.status is EntryStatus.LOADING for entry in self._entries.values())

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self.lock:
            return key in self._entries

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition_to_loading(self, key: str, handle: Any, ttl: Optional[float] = None) -> int:
        """Claim ``key`` for ``handle``. Returns the generation the load must commit under."""
        with self.lock:
            entry = self._entry(key)
            if entry.in_flight is not None:
                raise RuntimeError(f"Key '{key}' already has an in-flight load")
            entry.in_flight = handle
            entry.status = EntryStatus.LOADING
            entry.load_started_at = self.clock()
            if ttl is not None:
                entry.ttl = ttl
            generation = entry.generation
            self._notify(entry)
            return generation

    def commit_loaded(self, key: str, data: Any, generation: int) -> bool:
        with self.lock:
            entry = self._entry(key)
            if entry.generation != generation:
                return False
            entry.data = data
            entry.last_loaded_at = self.clock()
            entry.error = None
            entry.retry_count = 0
            entry.status = EntryStatus.LOADED
            entry.in_flight = None
            self._notify(entry)
            return True

    def commit_error(self, key: str, error: BaseException, generation: int) -> bool:
        """Record a terminal failure. ``data`` is left untouched."""
        with self.lock:
            entry = self._entry(key)
            if entry.generation != generation:
                return False
            entry.error = ErrorInfo.from_exception(error)
            entry.retry_count += 1
            entry.last_attempt_at = self.clock()
            entry.status = EntryStatus.FAILED
            entry.in_flight = None
            self._notify(entry)
            return True

    def abort_loading(self, key: str, handle: Any) -> bool:
        """Return a cancelled load's entry to the state it had before loading.

        Matches on the handle itself, so a late abort never touches a newer load.
        """
        with self.lock:
            entry = self._entries.get(key)
            if entry is None or entry.in_flight is None or entry.in_flight is not handle:
                return False
            entry.in_flight = None
            entry.status = self._resting_status(entry)
            self._notify(entry)
            return True

    def mark_stale(self, key: str) -> bool:
        """Clear ``last_loaded_at`` and bump the generation; data survives.

        A load still in flight is detached: it resolves its own callers but
        can no longer commit.
        """
        with self.lock:
            if key not in self._entries:
                return False
            entry = self._entries[key]
            entry.last_loaded_at = None
            entry.last_attempt_at = None
            entry.generation += 1
            if entry.in_flight is not None:
                entry.in_flight = None
                entry.status = self._resting_status(entry)
            self._notify(entry)
            return True

    def clear_error(self, key: str) -> bool:
        with self.lock:
            entry = self._entries.get(key)
            if entry is None or entry.error is None:
                return False
            entry.error = None
            entry.last_attempt_at = None
            if entry.status is EntryStatus.FAILED:
                entry.status = self._resting_status(entry)
            self._notify(entry)
            return True

    def reset(self, key: str) -> bool:
        with self.lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            self._reset_entry(entry)
            self._notify(entry)
            return True

    def reset_all(self) -> int:
        with self.lock:
            for entry in self._entries.values():
                self._reset_entry(entry)
            for entry in self._entries.values():
                self._notify(entry)
            return len(self._entries)

    def _reset_entry(self, entry: CacheEntry) -> None:
        entry.data = None
        entry.error = None
        entry.retry_count = 0
        entry.last_loaded_at = None
        entry.last_attempt_at = None
        entry.load_started_at = None
        entry.status = EntryStatus.IDLE
        entry.in_flight = None
        entry.ttl = self.default_ttl
        entry.generation += 1

    @staticmethod
    def _resting_status(entry: CacheEntry) -> EntryStatus:
        if entry.error is not None:
            return EntryStatus.FAILED
        if entry.data is not None or entry.last_loaded_at is not None:
            return EntryStatus.LOADED
        return EntryStatus.IDLE

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(key, snapshot)`` on every transition of ``key`` (or ``"*"``)."""
        with self.lock:
            self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            with self.lock:
                callbacks = self._subscribers.get(key)
                if callbacks and callback in callbacks:
                    callbacks.remove(callback)
                    if not callbacks:
                        del self._subscribers[key]

        return unsubscribe

    def subscriber_count(self) -> int:
        with self.lock:
            return sum(len(callbacks) for callbacks in self._subscribers.values())

    def _notify(self, entry: CacheEntry) -> None:
        seen: Set[int] = set()
        targets = list(self._subscribers.get(entry.key, ())) + list(self._subscribers.get(WILDCARD, ()))
        if not targets:
            return
        snapshot = self._snapshot(entry)
        for callback in targets:
            if id(callback) in seen:
                continue
            seen.add(id(callback))
            try:
                callback(entry.key, snapshot)
            except Exception as exc:
                self.logger.error(
                    "Subscriber raised during notification",
                    key=entry.key,
                    status=snapshot.status.value,
                    error=str(exc),
                )
