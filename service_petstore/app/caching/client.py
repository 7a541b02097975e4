"""
Per-request query client.

Bundles one cache store with its fetch, invalidation and hydration
coordinators. Build a new client for every server request (and one per
client-side bootstrap); never share one across users.
"""

import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from shared.config import BaseConfig
from shared.metrics import MetricsCollector
from ..auth.token_provider import AuthTokenProvider, TokenSource
from .coordinator import FetchCoordinator, FetchFn, QueryPolicy
from .hydration import HydrationPayload, StreamedResult, apply_streamed_result, hydrate, snapshot
from .invalidation import InvalidationCoordinator
from .keys import CacheKey, normalize_key
from .store import CacheEntry, CacheStore

DEFAULT_STALE_SECONDS = 120.0
DEFAULT_GC_RETENTION_SECONDS = 300.0

AuthLike = Union[AuthTokenProvider, TokenSource]


class QueryClient:
    """Entry point for keyed, coalesced, hydratable queries."""

    def __init__(
        self,
        *,
        auth: Optional[AuthLike] = None,
        stale_time: float = DEFAULT_STALE_SECONDS,
        timeout: Optional[float] = None,
        gc_retention: float = DEFAULT_GC_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
        store: Optional[CacheStore] = None,
    ):
        self.store = store if store is not None else CacheStore()
        self.clock = clock
        self.metrics = metrics
        self.gc_retention = gc_retention
        self.default_policy = QueryPolicy(stale_time=stale_time, timeout=timeout)
        self.coordinator = FetchCoordinator(
            self.store,
            auth,
            self.default_policy,
            clock=clock,
            metrics=metrics,
        )
        self.invalidation = InvalidationCoordinator(self.store, self.coordinator, metrics=metrics)

    @classmethod
    def from_config(
        cls,
        config: BaseConfig,
        *,
        auth: Optional[AuthLike] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "QueryClient":
        return cls(
            auth=auth,
            stale_time=config.default_stale_seconds,
            timeout=config.fetch_timeout_seconds,
            gc_retention=config.gc_retention_seconds,
            metrics=metrics,
        )

    def policy(self, **overrides: Any) -> QueryPolicy:
        """Default policy with ``overrides`` applied."""
        return self.default_policy.override(**overrides)

    async def fetch_query(
        self,
        key: CacheKey,
        fetch_fn: FetchFn,
        policy: Optional[QueryPolicy] = None,
        auth: Optional[AuthLike] = None,
    ) -> Any:
        return await self.coordinator.get_or_fetch(key, fetch_fn, policy, auth)

    async def prefetch_query(
        self,
        key: CacheKey,
        fetch_fn: FetchFn,
        policy: Optional[QueryPolicy] = None,
        auth: Optional[AuthLike] = None,
    ) -> None:
        await self.coordinator.prefetch(key, fetch_fn, policy, auth)

    def get_query_data(self, key: CacheKey) -> Any:
        return self.coordinator.get_query_data(key)

    def get_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        return self.store.get(normalize_key(key))

    def set_query_data(self, key: CacheKey, data: Any) -> CacheEntry:
        return self.coordinator.set_query_data(key, data)

    def invalidate_queries(self, prefix: CacheKey, refetch: bool = False) -> int:
        return self.invalidation.invalidate(prefix, refetch=refetch)

    async def refetch_queries(self, prefix: CacheKey) -> Dict[str, Any]:
        return await self.invalidation.invalidate_and_refetch(prefix)

    def remove_queries(self, prefix: CacheKey) -> int:
        return self.invalidation.remove(prefix)

    def collect_garbage(self, older_than: Optional[float] = None) -> List[CacheKey]:
        """Drop settled entries older than ``older_than`` (default: the client's retention)."""
        retention = self.gc_retention if older_than is None else older_than
        return self.invalidation.collect_garbage(retention, now=self.clock())

    def dehydrate(self, keys: Optional[Iterable[CacheKey]] = None, include_pending: bool = False) -> HydrationPayload:
        return snapshot(self.store, keys, include_pending=include_pending)

    def hydrate(self, payload: HydrationPayload) -> int:
        return hydrate(self.store, payload, self.coordinator, metrics=self.metrics)

    def apply_streamed(self, result: StreamedResult) -> None:
        apply_streamed_result(self.coordinator, result)
