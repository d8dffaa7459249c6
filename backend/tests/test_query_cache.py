from __future__ import annotations

import asyncio

import pytest
from tenacity import wait_exponential, wait_none

from keyconsole.client.query_cache import DEFAULT_RETRY_WAIT, QueryCache, call_with_retry


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingFetcher:
    """Returns 1, 2, 3, … on successive calls; fails the first `failures` calls."""

    def __init__(self, failures: int = 0) -> None:
        self.calls = 0
        self.failures = failures

    async def __call__(self) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom #{self.calls}")
        return self.calls - self.failures


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> QueryCache:
    return QueryCache(clock=clock, retry_wait=wait_none())


KEY = ("consumers", "list")


@pytest.mark.anyio
async def test_fresh_data_is_served_without_refetching(cache, clock) -> None:
    fetcher = CountingFetcher()

    first = await cache.fetch(KEY, fetcher)
    clock.advance(299)
    second = await cache.fetch(KEY, fetcher)

    assert first.data == 1
    assert second.data == 1
    assert second.is_success
    assert fetcher.calls == 1


@pytest.mark.anyio
async def test_stale_data_is_returned_then_refreshed(cache, clock) -> None:
    fetcher = CountingFetcher()
    await cache.fetch(KEY, fetcher)
    clock.advance(301)

    state = await cache.fetch(KEY, fetcher)
    assert state.data == 1

    await cache.drain()

    assert fetcher.calls == 2
    assert cache.peek(KEY).data == 2


@pytest.mark.anyio
async def test_expired_entries_are_evicted_and_refetched(cache, clock) -> None:
    fetcher = CountingFetcher()
    await cache.fetch(KEY, fetcher)
    clock.advance(600)

    assert cache.peek(KEY) is None
    state = await cache.fetch(KEY, fetcher)

    assert state.data == 2
    assert fetcher.calls == 2


@pytest.mark.anyio
async def test_collect_garbage_drops_only_expired_entries(cache, clock) -> None:
    await cache.fetch(("old",), CountingFetcher())
    clock.advance(400)
    await cache.fetch(("new",), CountingFetcher())
    clock.advance(250)

    assert cache.collect_garbage() == 1
    assert cache.peek(("old",)) is None
    assert cache.peek(("new",)) is not None


@pytest.mark.anyio
async def test_window_focus_refetches_even_fresh_queries(cache) -> None:
    fetcher = CountingFetcher()
    await cache.fetch(KEY, fetcher)

    cache.on_window_focus()
    await cache.drain()

    assert fetcher.calls == 2
    assert cache.peek(KEY).data == 2


@pytest.mark.anyio
async def test_reconnect_refetches_only_stale_queries(cache, clock) -> None:
    stale, fresh = CountingFetcher(), CountingFetcher()
    await cache.fetch(("stale",), stale)
    clock.advance(350)
    await cache.fetch(("fresh",), fresh)

    clock.advance(10)
    cache.on_reconnect()
    await cache.drain()

    assert fresh.calls == 1
    assert stale.calls == 2


@pytest.mark.anyio
async def test_reads_retry_before_succeeding(cache) -> None:
    fetcher = CountingFetcher(failures=3)

    state = await cache.fetch(KEY, fetcher)

    assert state.data == 1
    assert state.error is None
    assert fetcher.calls == 4


@pytest.mark.anyio
async def test_read_errors_are_captured_not_raised(cache) -> None:
    fetcher = CountingFetcher(failures=10)

    state = await cache.fetch(KEY, fetcher)

    assert state.is_error
    assert not state.is_success
    assert str(state.error) == "boom #4"
    assert fetcher.calls == 4


@pytest.mark.anyio
async def test_failed_key_is_fetched_again_on_next_read(cache) -> None:
    fetcher = CountingFetcher(failures=4)
    await cache.fetch(KEY, fetcher)

    state = await cache.fetch(KEY, fetcher)

    assert state.data == 1
    assert not state.is_error


@pytest.mark.anyio
async def test_invalidate_refetches_every_key_under_the_prefix(cache) -> None:
    a, b, other = CountingFetcher(), CountingFetcher(), CountingFetcher()
    await cache.fetch(("usage", "data", "a"), a)
    await cache.fetch(("usage", "model", "a"), b)
    await cache.fetch(("consumers", "list"), other)

    cache.invalidate(("usage",))
    await cache.drain()

    assert (a.calls, b.calls, other.calls) == (2, 2, 1)


@pytest.mark.anyio
async def test_set_data_patches_in_place(cache) -> None:
    await cache.fetch(KEY, CountingFetcher())

    cache.set_data(KEY, lambda old: old + 100)

    assert cache.peek(KEY).data == 101


def test_set_data_on_unknown_key_starts_from_none(cache) -> None:
    cache.set_data(("new",), lambda old: [] if old is None else old)

    assert cache.peek(("new",)).data == []


@pytest.mark.anyio
async def test_remove_drops_matching_keys(cache) -> None:
    await cache.fetch(("usage", "data", "a"), CountingFetcher())

    cache.remove(("usage",))

    assert cache.peek(("usage", "data", "a")) is None


@pytest.mark.anyio
async def test_call_with_retry_gives_up_after_retries() -> None:
    fetcher = CountingFetcher(failures=5)

    with pytest.raises(RuntimeError, match="boom #2"):
        await call_with_retry(fetcher, 1, wait_none())

    assert fetcher.calls == 2


def test_default_backoff_is_exponential_and_capped() -> None:
    assert isinstance(DEFAULT_RETRY_WAIT, wait_exponential)
    assert DEFAULT_RETRY_WAIT.multiplier == 1
    assert DEFAULT_RETRY_WAIT.max == 30
    assert isinstance(QueryCache().retry_wait, wait_exponential)


@pytest.mark.anyio
async def test_invalidate_restarts_a_refresh_already_in_flight(cache) -> None:
    upstream = ["a", "b"]
    started = asyncio.Event()
    release = asyncio.Event()
    release.set()
    calls = 0

    async def fetcher() -> list[str]:
        nonlocal calls
        calls += 1
        snapshot = list(upstream)
        started.set()
        await release.wait()
        return snapshot

    await cache.fetch(KEY, fetcher)

    # A focus refresh reads ["a", "b"] and stalls before it settles.
    release.clear()
    started.clear()
    cache.on_window_focus()
    await started.wait()

    # "b" is deleted upstream; the mutation invalidates and patches.
    upstream.remove("b")
    cache.invalidate(KEY)
    cache.set_data(KEY, lambda old: [c for c in old if c != "b"])
    assert cache.peek(KEY).data == ["a"]

    release.set()
    await cache.drain()

    state = cache.peek(KEY)
    assert state.data == ["a"]
    assert not state.is_fetching
    assert not state.is_error
    assert calls == 3


@pytest.mark.anyio
async def test_result_of_a_superseded_run_is_dropped(cache) -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    answers = iter(["before-mutation", "after-mutation"])

    async def fetcher() -> str:
        value = next(answers)
        if value == "before-mutation":
            started.set()
            await release.wait()
        return value

    first_read = asyncio.get_running_loop().create_task(cache.fetch(KEY, fetcher))
    await started.wait()

    cache.invalidate(KEY)
    await cache.drain()
    release.set()
    state = await first_read

    assert state.data == "after-mutation"
    assert not state.is_fetching
