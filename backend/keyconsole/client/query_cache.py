"""
Client-side query cache for the console's data layer.

Keyed by tuples such as ("consumers", "list") or
("usage", "data", subject, metric, time_range, window_size).

Policy (constructor parameters, defaults shown):
  • stale_time 300s  — fresher entries are served without refetching.
  • gc_time    600s  — older entries are evicted; the next read blocks
                       on a fresh fetch.
  • In between, reads return the cached data immediately and refresh in
    the background (stale-while-revalidate).
  • on_window_focus() refetches every known query regardless of age.
  • invalidate() cancels a refresh already in flight and starts a new
    one, so a response read before a mutation never lands after it.
  • Reads retry 3 times, mutations once, with exponential backoff.

Fetch errors are captured on the QueryState, never raised to the reader.
Concurrent writers are not coordinated: the last response to settle wins.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueryKey = tuple[Any, ...]
Fetcher = Callable[[], Awaitable[Any]]

# 1s, 2s, 4s, … capped at 30s
DEFAULT_RETRY_WAIT = wait_exponential(multiplier=1, max=30)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int,
    wait: wait_base = DEFAULT_RETRY_WAIT,
) -> T:
    """
    Await fn(), retrying up to `retries` extra times on any exception.

    The last exception is re-raised once retries are exhausted.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.DEBUG),
    ):
        with attempt:
            result = await fn()
    return result


@dataclass
class QueryState(Generic[T]):
    """What a renderer sees for one query."""

    data: T | None = None
    error: Exception | None = None
    updated_at: float | None = None
    is_fetching: bool = False

    @property
    def is_success(self) -> bool:
        return self.updated_at is not None and self.error is None

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class _Entry:
    state: QueryState[Any] = field(default_factory=QueryState)
    fetcher: Fetcher | None = None
    invalidated: bool = False
    refresh: asyncio.Task[None] | None = None
    # Bumped by every run; only the latest run may write its result.
    generation: int = 0


class QueryCache:
    """In-memory, keyed cache with stale-while-revalidate semantics."""

    def __init__(
        self,
        *,
        stale_time: float = 5 * 60,
        gc_time: float = 10 * 60,
        query_retry: int = 3,
        mutation_retry: int = 1,
        retry_wait: wait_base = DEFAULT_RETRY_WAIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stale_time = stale_time
        self.gc_time = gc_time
        self.query_retry = query_retry
        self.mutation_retry = mutation_retry
        self.retry_wait = retry_wait
        self._clock = clock
        self._entries: dict[QueryKey, _Entry] = {}

    # ── Reads ───────────────────────────────────────────────

    async def fetch(self, key: QueryKey, fetcher: Fetcher) -> QueryState[Any]:
        """
        Return the state for `key`, fetching as the policy requires.

        The fetcher is remembered so invalidation and focus events can
        refetch this key later.
        """
        entry = self._entries.get(key)
        if entry is not None and self._expired(entry):
            logger.debug("Evicting expired query %s", key)
            del self._entries[key]
            entry = None

        if entry is None:
            entry = self._entries[key] = _Entry(fetcher=fetcher)
            await self._run(key, entry)
            return entry.state

        entry.fetcher = fetcher
        if entry.state.updated_at is None:
            # Known key without data yet (e.g. only errors so far)
            await self._run(key, entry)
        elif self._stale(entry):
            self._schedule(key, entry)
        return entry.state

    def peek(self, key: QueryKey) -> QueryState[Any] | None:
        """Current state for `key` without fetching; None if absent or evicted."""
        entry = self._entries.get(key)
        if entry is None or self._expired(entry):
            return None
        return entry.state

    # ── Writes ──────────────────────────────────────────────

    def set_data(self, key: QueryKey, updater: Callable[[Any], Any]) -> None:
        """Apply an optimistic patch: data = updater(current data or None)."""
        entry = self._entries.setdefault(key, _Entry())
        entry.state.data = updater(entry.state.data)
        entry.state.error = None
        entry.state.updated_at = self._clock()
        entry.invalidated = False

    def invalidate(self, prefix: QueryKey) -> None:
        """
        Mark every key starting with `prefix` stale and refetch it in the background.

        A refresh already in flight is cancelled and restarted: it may have
        read upstream before the change that caused the invalidation.
        """
        for key, entry in self._matching(prefix):
            entry.invalidated = True
            if entry.fetcher is not None:
                self._schedule(key, entry, restart=True)

    def remove(self, prefix: QueryKey) -> None:
        for key, _entry in self._matching(prefix):
            del self._entries[key]

    def collect_garbage(self) -> int:
        """Drop entries past gc_time. Returns how many were dropped."""
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    # ── Refetch triggers ────────────────────────────────────

    def on_window_focus(self) -> None:
        """Refetch every known query, fresh or not."""
        for key, entry in list(self._entries.items()):
            if entry.fetcher is not None:
                self._schedule(key, entry)

    def on_reconnect(self) -> None:
        """Refetch the queries that have gone stale while offline."""
        for key, entry in list(self._entries.items()):
            if entry.fetcher is not None and self._stale(entry):
                self._schedule(key, entry)

    async def drain(self) -> None:
        """Wait until no background refresh is in flight."""
        while True:
            tasks = [
                entry.refresh
                for entry in self._entries.values()
                if entry.refresh is not None and not entry.refresh.done()
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Internals ───────────────────────────────────────────

    def _stale(self, entry: _Entry) -> bool:
        if entry.invalidated or entry.state.updated_at is None:
            return True
        return self._clock() - entry.state.updated_at >= self.stale_time

    def _expired(self, entry: _Entry) -> bool:
        if entry.state.updated_at is None:
            return False
        return self._clock() - entry.state.updated_at >= self.gc_time

    def _matching(self, prefix: QueryKey) -> list[tuple[QueryKey, _Entry]]:
        n = len(prefix)
        return [(key, entry) for key, entry in list(self._entries.items()) if key[:n] == prefix]

    def _schedule(self, key: QueryKey, entry: _Entry, *, restart: bool = False) -> None:
        running = entry.refresh
        if running is not None and not running.done():
            if not restart:
                return
            logger.debug("Restarting in-flight refresh of %s", key)
            running.cancel()
        entry.refresh = asyncio.get_running_loop().create_task(self._run(key, entry))

    async def _run(self, key: QueryKey, entry: _Entry) -> None:
        fetcher = entry.fetcher
        if fetcher is None:
            return

        entry.generation += 1
        generation = entry.generation
        entry.state.is_fetching = True
        try:
            data = await call_with_retry(fetcher, self.query_retry, self.retry_wait)
        except Exception as exc:
            if entry.generation != generation:
                return
            logger.warning("Query %s failed after %d retries: %s", key, self.query_retry, exc)
            entry.state.error = exc
        else:
            if entry.generation != generation:
                logger.debug("Dropping outdated result for %s", key)
                return
            entry.state.data = data
            entry.state.error = None
            entry.state.updated_at = self._clock()
            entry.invalidated = False
        finally:
            if entry.generation == generation:
                entry.state.is_fetching = False
