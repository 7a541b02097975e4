"""
Prefix-based invalidation of cached queries.
"""

import asyncio
from typing import Any, Dict, List, Optional

from shared.logging import get_logger, query_context
from shared.metrics import MetricsCollector
from .coordinator import FetchCoordinator
from .keys import CacheKey, normalize_key
from .store import CacheEntry, CacheStore, QueryStatus


def _mark_stale(current: Optional[CacheEntry]) -> Optional[CacheEntry]:
    if current is None:
        return None
    return current.with_status(QueryStatus.STALE)


class InvalidationCoordinator:
    """Marks, refetches and removes cache entries by key prefix.

    Invalidated entries keep their data so consumers never flip to an empty
    state; the next read treats them as a miss.
    """

    def __init__(
        self,
        store: CacheStore,
        coordinator: Optional[FetchCoordinator] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.coordinator = coordinator
        self.metrics = metrics
        self.logger = get_logger("petstore.invalidation")

    def invalidate(self, prefix: CacheKey, refetch: bool = False) -> int:
        """Mark every entry under ``prefix`` stale. Returns the number marked.

        With ``refetch`` the coordinator refetches, in the background, each
        matching key it knows a fetcher for. That needs a running event loop.
        """
        prefix = normalize_key(prefix)
        # Background refetches copy this context and log the prefix that triggered them
        with query_context(query_prefix=prefix):
            keys = self._mark(prefix)

            if refetch and self.coordinator is not None:
                for key in keys:
                    if self.coordinator.has_fetcher(key):
                        self.coordinator.schedule_refetch(key)

            self.logger.info("Invalidated queries", count=len(keys), refetch=refetch)
        return len(keys)

    async def invalidate_and_refetch(self, prefix: CacheKey) -> Dict[str, Any]:
        """Invalidate ``prefix`` and wait for the refetches to settle."""
        prefix = normalize_key(prefix)
        with query_context(query_prefix=prefix):
            keys = self._mark(prefix)
            targets = [key for key in keys if self.coordinator is not None and self.coordinator.has_fetcher(key)]

            results = await asyncio.gather(
                *(self.coordinator.refetch(key) for key in targets),
                return_exceptions=True
            )

        summary: Dict[str, Any] = {"invalidated": len(keys), "refetched": 0, "errors": []}
        for key, outcome in zip(targets, results):
            if isinstance(outcome, Exception):
                summary["errors"].append({"key": list(key), "error": str(outcome)})
            else:
                summary["refetched"] += 1

        self.logger.info(
            "Invalidated and refetched queries",
            query_prefix=list(prefix),
            invalidated=summary["invalidated"],
            refetched=summary["refetched"],
            errors=len(summary["errors"]),
        )
        return summary

    def remove(self, prefix: CacheKey) -> int:
        """Delete every entry under ``prefix``."""
        prefix = normalize_key(prefix)
        removed = 0
        for entry in self.store.scan_by_prefix(prefix):
            if self.store.remove(entry.key):
                removed += 1
            if self.coordinator is not None:
                self.coordinator.forget(entry.key)

        self.logger.info("Removed queries", query_prefix=list(prefix), count=removed)
        return removed

    def collect_garbage(self, older_than: float, now: float) -> List[CacheKey]:
        """Remove settled entries last fetched more than ``older_than`` seconds ago.

        Entries with a fetch in flight are kept regardless of age.
        """
        removed: List[CacheKey] = []
        for entry in self.store.scan_by_prefix(()):
            if entry.status == QueryStatus.LOADING:
                continue
            if self.coordinator is not None and self.coordinator.is_fetching(entry.key):
                continue
            if entry.fetched_at is not None and now - entry.fetched_at <= older_than:
                continue
            if self.store.remove(entry.key):
                removed.append(entry.key)
                if self.coordinator is not None:
                    self.coordinator.forget(entry.key)

        if removed:
            self.logger.debug("Collected expired queries", count=len(removed))
        return removed

    def _mark(self, prefix: CacheKey) -> List[CacheKey]:
        keys: List[CacheKey] = []
        for entry in self.store.scan_by_prefix(prefix):
            in_flight = self.coordinator is not None and self.coordinator.mark_stale_on_settle(entry.key)
            if not in_flight:
                self.store.update(entry.key, _mark_stale)
            keys.append(entry.key)

        if keys and self.metrics:
            domain = str(prefix[0]) if prefix else "*"
            self.metrics.increment_counter("query_invalidations_total", amount=len(keys), domain=domain)
        return keys
