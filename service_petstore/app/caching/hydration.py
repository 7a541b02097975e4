"""
Server-to-client cache hydration.

The server runs its fetches ahead of the response, ``snapshot`` exports the
settled entries, and the client calls ``hydrate`` on a fresh store before any
read so the first read of a hydrated key is a cache hit. Only successful
entries travel; a key whose server fetch failed is simply missing and the
client fetches it cold.

Streaming: ``snapshot(..., include_pending=True)`` also emits keys whose
fetch is still running as ``pending`` placeholders. The client registers
them with its coordinator, readers wait on them like on any in-flight fetch,
and ``apply_streamed_result`` settles them when the server's result arrives.
"""

import copy
from typing import Any, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter, model_validator

from shared.errors import HydrationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .coordinator import FetchCoordinator
from .keys import CacheKey, key_to_json, normalize_key
from .store import CacheEntry, CacheStore, QueryStatus

logger = get_logger("petstore.hydration")


class DehydratedEntry(BaseModel):
    """One transportable cache entry."""

    model_config = ConfigDict(populate_by_name=True)

    key: List[Any]
    data: Any = None
    fetched_at: Optional[float] = Field(default=None, alias="fetchedAt")
    status: Literal["success", "pending"] = "success"

    @model_validator(mode="after")
    def _check_settled(self) -> "DehydratedEntry":
        if not self.key:
            raise ValueError("Dehydrated entry key must not be empty")
        if self.status == "success" and self.fetched_at is None:
            raise ValueError("Settled entries need fetchedAt")
        return self

    @property
    def cache_key(self) -> CacheKey:
        return normalize_key(self.key)


class StreamedResult(BaseModel):
    """Late outcome for a key sent earlier as a pending placeholder."""

    model_config = ConfigDict(populate_by_name=True)

    key: List[Any]
    data: Any = None
    fetched_at: Optional[float] = Field(default=None, alias="fetchedAt")
    error: Optional[str] = None


_ENTRY_LIST = TypeAdapter(List[DehydratedEntry])


class HydrationPayload(BaseModel):
    """Ordered cache snapshot produced once per server render."""

    entries: List[DehydratedEntry] = Field(default_factory=list)
    _consumed: bool = PrivateAttr(default=False)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def __len__(self) -> int:
        return len(self.entries)

    def to_transport(self) -> List[dict]:
        """Wire form: a JSON-compatible list of ``{key, data, fetchedAt}``."""
        return _ENTRY_LIST.dump_python(self.entries, mode="json", by_alias=True)

    def to_json(self) -> str:
        return _ENTRY_LIST.dump_json(self.entries, by_alias=True).decode("utf-8")

    @classmethod
    def from_transport(cls, items: Iterable[Any]) -> "HydrationPayload":
        return cls(entries=_ENTRY_LIST.validate_python(list(items)))

    @classmethod
    def from_json(cls, raw: str) -> "HydrationPayload":
        return cls(entries=_ENTRY_LIST.validate_json(raw))


def snapshot(
    store: CacheStore,
    keys: Optional[Iterable[CacheKey]] = None,
    *,
    include_pending: bool = False,
) -> HydrationPayload:
    """Export the settled entries of ``store``, optionally limited to ``keys``."""
    wanted = None if keys is None else {normalize_key(key) for key in keys}
    entries: List[DehydratedEntry] = []
    skipped = 0

    for entry in store.scan_by_prefix(()):
        if wanted is not None and entry.key not in wanted:
            continue
        if entry.status == QueryStatus.SUCCESS:
            entries.append(DehydratedEntry(
                key=key_to_json(entry.key),
                data=copy.deepcopy(entry.data),
                fetched_at=entry.fetched_at,
            ))
        elif include_pending and entry.status == QueryStatus.LOADING:
            entries.append(DehydratedEntry(key=key_to_json(entry.key), status="pending"))
        else:
            skipped += 1

    logger.debug("Snapshot taken", entries=len(entries), skipped=skipped)
    return HydrationPayload(entries=entries)


def hydrate(
    store: CacheStore,
    payload: HydrationPayload,
    coordinator: Optional[FetchCoordinator] = None,
    *,
    metrics: Optional[MetricsCollector] = None,
) -> int:
    """Seed ``store`` from ``payload``. Returns how many keys were inserted.

    Keys the store already holds are left alone. Pending placeholders are
    only applied when a coordinator is given (and need a running loop).
    """
    if payload.consumed:
        raise HydrationError("Hydration payload has already been applied")
    payload._consumed = True

    inserted = 0
    for item in payload.entries:
        key = item.cache_key

        if item.status == "pending":
            if coordinator is None:
                logger.debug("Dropping pending placeholder without coordinator", query_key=item.key)
                continue
            if store.get(key) is None:
                coordinator.expect(key)
                inserted += 1
            continue

        def _insert(current: Optional[CacheEntry], item: DehydratedEntry = item, key: CacheKey = key) -> Optional[CacheEntry]:
            if current is not None:
                return None
            return CacheEntry(
                key=key,
                data=item.data,
                status=QueryStatus.SUCCESS,
                fetched_at=item.fetched_at,
            )

        if store.update(key, _insert) is not None:
            inserted += 1

    if metrics and inserted:
        metrics.increment_counter("hydrated_entries_total", amount=inserted)
    logger.info("Hydrated cache", received=len(payload.entries), inserted=inserted)
    return inserted


def apply_streamed_result(coordinator: FetchCoordinator, result: StreamedResult) -> None:
    """Settle a pending placeholder with the server's late result."""
    coordinator.settle_streamed(
        normalize_key(result.key),
        result.data,
        fetched_at=result.fetched_at,
        error=result.error,
    )
