"""
In-process cache store for query results.

Entries are immutable values indexed by a trie over key segments: a prefix
scan walks only the subtree under the prefix, independent of how many
unrelated keys the store holds. Writers hold a re-entrant lock, so a put
never interleaves with another write to the same key and readers always see
a whole entry.
"""

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from .keys import CacheKey


class QueryStatus(str, Enum):
    """Lifecycle states of a cache entry."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    STALE = "stale"
    ERROR = "error"


@dataclass(frozen=True)
class ErrorInfo:
    """What went wrong on the last fetch of an entry."""
    type: str
    message: str
    code: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        return cls(
            type=type(exc).__name__,
            message=str(exc),
            code=getattr(exc, "code", None),
        )


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of one cached query."""
    key: CacheKey
    data: Any = None
    status: QueryStatus = QueryStatus.IDLE
    fetched_at: Optional[float] = None
    error: Optional[ErrorInfo] = None

    def is_fresh(self, now: float, stale_time: float) -> bool:
        """Whether the entry may be served without refetching."""
        if self.status != QueryStatus.SUCCESS or self.fetched_at is None:
            return False
        if stale_time <= 0:
            return False
        return now - self.fetched_at < stale_time

    def with_status(self, status: QueryStatus, **changes: Any) -> "CacheEntry":
        return replace(self, status=status, **changes)


@dataclass
class _Node:
    children: Dict[Any, "_Node"] = field(default_factory=dict)
    entry: Optional[CacheEntry] = None


class CacheStore:
    """Single logical table of cache entries keyed by key sequence."""

    def __init__(self):
        self._root = _Node()
        self._size = 0
        self._lock = threading.RLock()

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return the entry stored under ``key`` if any."""
        node = self._find(key)
        return node.entry if node is not None else None

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        """Store ``entry`` under ``key``, replacing any previous entry."""
        if entry.key != key:
            entry = replace(entry, key=key)
        with self._lock:
            node = self._root
            for segment in key:
                node = node.children.setdefault(segment, _Node())
            if node.entry is None:
                self._size += 1
            node.entry = entry

    def update(self, key: CacheKey, func: Callable[[Optional[CacheEntry]], Optional[CacheEntry]]) -> Optional[CacheEntry]:
        """Atomically replace the entry for ``key`` with ``func(current)``.

        Returning ``None`` from ``func`` leaves the store untouched.
        """
        with self._lock:
            new_entry = func(self.get(key))
            if new_entry is not None:
                self.put(key, new_entry)
            return new_entry

    def remove(self, key: CacheKey) -> bool:
        """Remove the entry for ``key``. Returns whether one existed."""
        with self._lock:
            path = [self._root]
            for segment in key:
                child = path[-1].children.get(segment)
                if child is None:
                    return False
                path.append(child)
            if path[-1].entry is None:
                return False
            path[-1].entry = None
            self._size -= 1
            self._prune(key, path)
            return True

    def scan_by_prefix(self, prefix: CacheKey) -> List[CacheEntry]:
        """All entries whose key starts with ``prefix`` (depth first, parents before children)."""
        with self._lock:
            node = self._find(prefix)
            if node is None:
                return []
            return list(self._walk(node))

    def keys(self) -> List[CacheKey]:
        return [entry.key for entry in self.scan_by_prefix(())]

    def clear(self) -> None:
        with self._lock:
            self._root = _Node()
            self._size = 0

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: CacheKey) -> bool:
        return self.get(key) is not None

    def _find(self, key: CacheKey) -> Optional[_Node]:
        node = self._root
        for segment in key:
            node = node.children.get(segment)
            if node is None:
                return None
        return node

    @staticmethod
    def _walk(node: _Node) -> Iterator[CacheEntry]:
        stack = [node]
        while stack:
            current = stack.pop()
            if current.entry is not None:
                yield current.entry
            stack.extend(reversed(list(current.children.values())))

    @staticmethod
    def _prune(key: CacheKey, path: List[_Node]) -> None:
        # Drop empty branches left behind by a removal
        for depth in range(len(key), 0, -1):
            node = path[depth]
            if node.entry is not None or node.children:
                break
            del path[depth - 1].children[key[depth - 1]]
