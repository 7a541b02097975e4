"""
Query caching package.

Keys, the entry store, fetch coalescing, hydration and invalidation for
results of resource-service calls. Nothing here performs network I/O; fetch
functions are supplied by callers.
"""

from .client import QueryClient
from .coordinator import FetchCoordinator, PendingRequest, QueryPolicy
from .hydration import DehydratedEntry, HydrationPayload, StreamedResult, hydrate, snapshot
from .invalidation import InvalidationCoordinator
from .keys import CacheKey, PetstoreKeys, build_key, normalize_key
from .store import CacheEntry, CacheStore, ErrorInfo, QueryStatus

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheStore",
    "DehydratedEntry",
    "ErrorInfo",
    "FetchCoordinator",
    "HydrationPayload",
    "InvalidationCoordinator",
    "PendingRequest",
    "PetstoreKeys",
    "QueryClient",
    "QueryPolicy",
    "QueryStatus",
    "StreamedResult",
    "build_key",
    "hydrate",
    "normalize_key",
    "snapshot",
]
