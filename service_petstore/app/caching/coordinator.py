"""
Fetch coordination for the query cache.

``FetchCoordinator.get_or_fetch`` serves fresh entries from the store and
otherwise runs the caller's fetch function, making sure at most one fetch per
key is in flight. Concurrent callers for the same key await the same task and
observe the same outcome. Callers await the task through ``asyncio.shield``,
so a caller that goes away does not cancel the fetch; its result still lands
in the store.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from shared.errors import FetchTimeoutError, HydrationError
from shared.logging import annotate_query, get_logger, query_context
from shared.metrics import MetricsCollector
from ..auth.token_provider import AuthTokenProvider, CallContext, TokenSource, as_provider
from .keys import CacheKey, normalize_key
from .store import CacheEntry, CacheStore, ErrorInfo, QueryStatus

FetchFn = Callable[[CallContext], Awaitable[Any]]


@dataclass(frozen=True)
class QueryPolicy:
    """Per-call fetch policy.

    ``stale_time`` is in seconds; zero or less refetches on every call.
    ``timeout`` bounds the fetch itself and is reported as a failure.
    """
    stale_time: float = 0.0
    enabled: bool = True
    timeout: Optional[float] = None

    def override(self, **changes: Any) -> "QueryPolicy":
        return replace(self, **changes)


@dataclass
class PendingRequest:
    """The single in-flight fetch for a key and the callers waiting on it."""
    key: CacheKey
    future: "asyncio.Future[Any]"
    started_at: float
    waiters: int = 0
    streamed: bool = False
    invalidated: bool = False


@dataclass
class _Registration:
    fetch_fn: FetchFn
    policy: QueryPolicy
    auth: AuthTokenProvider


class FetchCoordinator:
    """Returns cached data or runs exactly one de-duplicated fetch per key."""

    def __init__(
        self,
        store: CacheStore,
        auth: Optional[Union[AuthTokenProvider, TokenSource]] = None,
        default_policy: Optional[QueryPolicy] = None,
        *,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.auth = as_provider(auth)
        self.default_policy = default_policy or QueryPolicy()
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("petstore.coordinator")

        self._pending: Dict[CacheKey, PendingRequest] = {}
        self._registrations: Dict[CacheKey, _Registration] = {}
        self._background: Set["asyncio.Future[Any]"] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_fetching(self, key: CacheKey) -> bool:
        return normalize_key(key) in self._pending

    def pending(self, key: CacheKey) -> Optional[PendingRequest]:
        return self._pending.get(normalize_key(key))

    def has_fetcher(self, key: CacheKey) -> bool:
        return normalize_key(key) in self._registrations

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch_fn: FetchFn,
        policy: Optional[QueryPolicy] = None,
        auth: Optional[Union[AuthTokenProvider, TokenSource]] = None,
    ) -> Any:
        """Return data for ``key``, fetching it at most once concurrently."""
        policy = policy or self.default_policy
        key = normalize_key(key)

        if not policy.enabled:
            self._record_lookup("disabled")
            return None

        provider = self.auth if auth is None else as_provider(auth)
        self._registrations[key] = _Registration(fetch_fn, policy, provider)

        with query_context(query_key=key):
            while True:
                entry = self.store.get(key)
                if entry is not None and entry.is_fresh(self.clock(), policy.stale_time):
                    self._record_lookup("hit")
                    return entry.data

                pending = self._pending.get(key)
                if pending is None:
                    self._record_lookup("miss")
                    pending = self._start_fetch(key, fetch_fn, policy, provider)
                else:
                    self._record_lookup("coalesced")
                    self.logger.debug("Joining in-flight fetch", waiters=pending.waiters)

                pending.waiters += 1
                try:
                    return await asyncio.shield(pending.future)
                except HydrationError:
                    if not pending.streamed:
                        raise
                    # The server could not produce this entry; fetch it here instead
                    self.logger.info("Streamed entry failed, falling back to direct fetch")
                finally:
                    pending.waiters -= 1

    async def prefetch(
        self,
        key: CacheKey,
        fetch_fn: FetchFn,
        policy: Optional[QueryPolicy] = None,
        auth: Optional[Union[AuthTokenProvider, TokenSource]] = None,
    ) -> None:
        """Warm ``key`` without surfacing failures.

        Used ahead of server rendering: a failed prefetch leaves the key out
        of the hydration payload and the consumer fetches it cold.
        """
        with query_context(query_key=normalize_key(key)):
            try:
                await self.get_or_fetch(key, fetch_fn, policy, auth)
            except Exception as exc:
                self.logger.warning("Prefetch failed", error_type=type(exc).__name__, error=str(exc))

    async def refetch(self, key: CacheKey) -> Any:
        """Force a fetch of ``key`` with the fetcher it was last read with."""
        key = normalize_key(key)
        registration = self._registrations.get(key)
        if registration is None:
            raise KeyError(f"No fetcher registered for {list(key)}")
        pending = self._pending.get(key)
        if pending is None:
            pending = self._start_fetch(key, registration.fetch_fn, registration.policy, registration.auth)
        pending.waiters += 1
        try:
            return await asyncio.shield(pending.future)
        finally:
            pending.waiters -= 1

    def schedule_refetch(self, key: CacheKey) -> "asyncio.Future[Any]":
        """Refetch ``key`` in the background. Failures are logged, not raised."""
        task = asyncio.ensure_future(self.refetch(key))
        self._background.add(task)
        task.add_done_callback(self._finish_background)
        return task

    def get_query_data(self, key: CacheKey) -> Any:
        entry = self.store.get(normalize_key(key))
        return entry.data if entry is not None else None

    def set_query_data(self, key: CacheKey, data: Any, fetched_at: Optional[float] = None) -> CacheEntry:
        """Write ``data`` for ``key`` as a successful fetch."""
        key = normalize_key(key)
        entry = CacheEntry(
            key=key,
            data=data,
            status=QueryStatus.SUCCESS,
            fetched_at=self.clock() if fetched_at is None else fetched_at,
        )
        self.store.put(key, entry)
        self._update_size_gauge()
        return entry

    def mark_stale_on_settle(self, key: CacheKey) -> bool:
        """Make the in-flight fetch of ``key`` settle as stale instead of success."""
        pending = self._pending.get(normalize_key(key))
        if pending is None:
            return False
        pending.invalidated = True
        return True

    def forget(self, key: CacheKey) -> None:
        self._registrations.pop(normalize_key(key), None)

    def expect(self, key: CacheKey) -> PendingRequest:
        """Register a placeholder for a result the server will stream later.

        Readers of ``key`` see ``loading`` and join the placeholder exactly as
        they would join a local fetch.
        """
        key = normalize_key(key)
        existing = self._pending.get(key)
        if existing is not None:
            return existing

        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        pending = PendingRequest(key=key, future=future, started_at=self.clock(), streamed=True)
        self._pending[key] = pending
        self.store.update(key, lambda current: (current or CacheEntry(key=key)).with_status(QueryStatus.LOADING))
        self._update_size_gauge()
        return pending

    def settle_streamed(
        self,
        key: CacheKey,
        data: Any = None,
        *,
        fetched_at: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        """Deliver the server's outcome for a streamed placeholder."""
        key = normalize_key(key)
        with query_context(query_key=key, streamed=True):
            pending = self._pending.get(key)
            if pending is not None and not pending.streamed:
                # A local fetch already owns this key; let it decide
                self.logger.debug("Ignoring streamed result for locally fetched key")
                return
            if pending is None and self.store.get(key) is not None:
                # Existing client entries win, as in hydrate
                self.logger.debug("Ignoring streamed result for key already held")
                return

            if error is None:
                self.set_query_data(key, data, fetched_at)
                if pending is not None:
                    del self._pending[key]
                    pending.future.set_result(data)
                annotate_query(outcome="success")
                self.logger.debug("Streamed result settled")
                return

            failure = HydrationError(f"Server failed to produce {list(key)}: {error}", details={"key": list(key)})
            self.store.update(
                key,
                lambda current: (current or CacheEntry(key=key)).with_status(
                    QueryStatus.ERROR, error=ErrorInfo.from_exception(failure)
                ),
            )
            if pending is not None:
                del self._pending[key]
                pending.future.set_exception(failure)
            annotate_query(outcome="error")
            self.logger.warning("Streamed result failed", error=error)

    def _start_fetch(
        self,
        key: CacheKey,
        fetch_fn: FetchFn,
        policy: QueryPolicy,
        provider: AuthTokenProvider,
    ) -> PendingRequest:
        self.store.update(
            key,
            lambda current: (current or CacheEntry(key=key)).with_status(QueryStatus.LOADING, error=None),
        )
        task = asyncio.ensure_future(self._run_fetch(key, fetch_fn, policy, provider))
        task.add_done_callback(_consume_exception)
        pending = PendingRequest(key=key, future=task, started_at=self.clock())
        self._pending[key] = pending
        self._update_size_gauge()
        return pending

    async def _run_fetch(
        self,
        key: CacheKey,
        fetch_fn: FetchFn,
        policy: QueryPolicy,
        provider: AuthTokenProvider,
    ) -> Any:
        # Runs in its own task; everything the fetch logs carries the key
        with query_context(query_key=key):
            started = time.perf_counter()
            try:
                context = await provider.credentials(key)
                if policy.timeout is None:
                    data = await fetch_fn(context)
                else:
                    try:
                        data = await asyncio.wait_for(fetch_fn(context), policy.timeout)
                    except asyncio.TimeoutError as exc:
                        raise FetchTimeoutError(
                            f"Fetch exceeded {policy.timeout}s",
                            details={"key": list(key), "timeout": policy.timeout}
                        ) from exc
            except (Exception, asyncio.CancelledError) as exc:
                self._settle_failure(key, exc)
                self._observe_fetch("error", started)
                raise

            self._settle_success(key, data)
            self._observe_fetch("success", started)
            return data

    def _settle_success(self, key: CacheKey, data: Any) -> None:
        pending = self._pending.pop(key, None)
        status = QueryStatus.STALE if pending is not None and pending.invalidated else QueryStatus.SUCCESS
        self.store.put(key, CacheEntry(key=key, data=data, status=status, fetched_at=self.clock()))
        annotate_query(outcome="success", status=status.value)
        self.logger.debug("Fetch succeeded")

    def _settle_failure(self, key: CacheKey, exc: BaseException) -> None:
        self._pending.pop(key, None)
        info = ErrorInfo.from_exception(exc)
        self.store.update(
            key,
            lambda current: (current or CacheEntry(key=key)).with_status(QueryStatus.ERROR, error=info),
        )
        annotate_query(outcome="error", error_type=info.type)
        self.logger.warning("Fetch failed", error=info.message)

    def _finish_background(self, task: "asyncio.Future[Any]") -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("Background refetch failed", error_type=type(exc).__name__, error=str(exc))

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("query_cache_requests_total", result=result)

    def _observe_fetch(self, outcome: str, started: float) -> None:
        if self.metrics:
            self.metrics.observe_histogram(
                "query_fetch_duration_seconds",
                time.perf_counter() - started,
                outcome=outcome,
            )
        self._update_size_gauge()

    def _update_size_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("query_cache_entries", len(self.store))


def _consume_exception(future: "asyncio.Future[Any]") -> None:
    # Every waiter may have gone away; mark the outcome as retrieved
    if not future.cancelled():
        future.exception()
