"""
Forced, age-based and full invalidation over a ``CacheStore``.
"""

from typing import List, Optional

from shared.logging import get_logger

from .store import CacheStore


class Invalidator:
    """The only component besides the coordinator allowed to mutate entries."""

    def __init__(self, store: CacheStore):
        self.store = store
        self.logger = get_logger("loadcache.invalidator")

    def force_refresh(self, key: str) -> bool:
        """Mark ``key`` stale, keeping its data for stale-while-revalidate."""
        changed = self.store.mark_stale(key)
        if changed:
            self.logger.info("Entry marked stale", key=key)
        return changed

    def force_refresh_all(self) -> List[str]:
        refreshed = [key for key in self.store.keys() if self.store.mark_stale(key)]
        self.logger.info("All entries marked stale", count=len(refreshed))
        return refreshed

    def expire_older_than(self, max_age: float) -> List[str]:
        """Mark stale every loaded entry whose data is older than ``max_age`` seconds."""
        expired = []
        for snapshot in self.store.snapshots():
            if snapshot.age is not None and snapshot.age > max_age:
                if self.store.mark_stale(snapshot.key):
                    expired.append(snapshot.key)
        if expired:
            self.logger.info("Expired old entries", keys=expired, max_age=max_age)
        return expired

    def clear_error(self, key: str) -> bool:
        return self.store.clear_error(key)

    def reset(self, key: str) -> bool:
        """Return ``key`` to its default idle state, dropping data and error."""
        changed = self.store.reset(key)
        if changed:
            self.logger.info("Entry reset", key=key)
        return changed

    def reset_all(self, reason: Optional[str] = None) -> int:
        """Reset every entry. Required whenever the authorizing session changes."""
        count = self.store.reset_all()
        self.logger.info("All entries reset", count=count, reason=reason)
        return count
