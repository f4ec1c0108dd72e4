"""Tests for the fan-in result cache: hits, joins, failures, TTL and LRU."""

from __future__ import annotations

import asyncio

import pytest

from gemini_mcp.foundation.errors import Err, ErrorCode, ErrorKind, Ok, ToolError
from gemini_mcp.io.cache import CacheState, ResultCache, fingerprint


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class Counter:
    """Compute function that counts calls and can be held open."""

    def __init__(self, value: object = "v", *, fail: ErrorCode | None = None) -> None:
        self.calls = 0
        self.value = value
        self.fail = fail
        self.gate = asyncio.Event()
        self.gate.set()

    async def __call__(self):
        self.calls += 1
        await self.gate.wait()
        if self.fail is not None:
            return Err(ToolError.create("t", "upstream down", self.fail))
        return Ok(self.value)


def test_fingerprint_is_order_insensitive() -> None:
    assert fingerprint("t", {"a": 1, "b": {"x": 1, "y": 2}}) == fingerprint("t", {"b": {"y": 2, "x": 1}, "a": 1})
    assert fingerprint("t", {"a": 1}) != fingerprint("u", {"a": 1})
    assert len(fingerprint("t", {})) == 64


@pytest.mark.asyncio
async def test_ready_hit_skips_compute() -> None:
    cache: ResultCache[str] = ResultCache()
    compute = Counter("payload")
    first = await cache.get_or_compute("k", compute)
    second = await cache.get_or_compute("k", compute)
    assert first == second == Ok("payload")
    assert compute.calls == 1
    assert cache.state_of("k") is CacheState.READY
    assert cache.stats()["hits"] == 1 and cache.stats()["misses"] == 1


@pytest.mark.asyncio
async def test_concurrent_requests_fan_in() -> None:
    """Many waiters on one Pending entry: one computation, identical results."""
    cache: ResultCache[str] = ResultCache()
    compute = Counter("shared")
    compute.gate.clear()

    waiters = [asyncio.create_task(cache.get_or_compute("k", compute)) for _ in range(5)]
    await asyncio.sleep(0)
    assert cache.state_of("k") is CacheState.PENDING
    compute.gate.set()
    results = await asyncio.gather(*waiters)

    assert compute.calls == 1
    assert all(r == Ok("shared") for r in results)
    assert cache.stats()["joins"] == 4


@pytest.mark.asyncio
async def test_failure_broadcast_and_not_memoized() -> None:
    cache: ResultCache[str] = ResultCache()
    failing = Counter(fail=ErrorCode.SERVER_ERROR)
    failing.gate.clear()
    waiters = [asyncio.create_task(cache.get_or_compute("k", failing)) for _ in range(3)]
    await asyncio.sleep(0)
    failing.gate.set()
    results = await asyncio.gather(*waiters)

    assert failing.calls == 1
    assert all(r.unwrap_err().code is ErrorCode.SERVER_ERROR for r in results)
    assert "k" not in cache

    recovered = Counter("ok")
    assert await cache.get_or_compute("k", recovered) == Ok("ok")
    assert recovered.calls == 1


@pytest.mark.asyncio
async def test_compute_exception_becomes_error() -> None:
    cache: ResultCache[str] = ResultCache()

    async def broken():
        raise RuntimeError("kaboom")

    result = await cache.get_or_compute("k", broken)
    assert "kaboom" in result.unwrap_err().message
    assert "k" not in cache


@pytest.mark.asyncio
async def test_wait_timeout_leaves_computation_running() -> None:
    cache: ResultCache[str] = ResultCache()
    compute = Counter("late")
    compute.gate.clear()

    timed_out = await cache.get_or_compute("k", compute, timeout=0.01)
    error = timed_out.unwrap_err()
    assert error.kind is ErrorKind.TIMEOUT
    assert cache.state_of("k") is CacheState.PENDING

    compute.gate.set()
    assert await cache.get_or_compute("k", compute) == Ok("late")
    assert compute.calls == 1


@pytest.mark.asyncio
async def test_ttl_expiry() -> None:
    clock = Clock()
    cache: ResultCache[str] = ResultCache(ttl=10, clock=clock)
    compute = Counter()
    await cache.get_or_compute("k", compute)
    clock.now += 9
    await cache.get_or_compute("k", compute)
    assert compute.calls == 1
    clock.now += 11
    await cache.get_or_compute("k", compute)
    assert compute.calls == 2
    assert cache.stats()["expirations"] == 1


@pytest.mark.asyncio
async def test_lru_evicts_least_recently_accessed_ready() -> None:
    clock = Clock()
    cache: ResultCache[str] = ResultCache(max_entries=2, clock=clock)
    for key in ("a", "b"):
        clock.now += 1
        await cache.get_or_compute(key, Counter(key))
    clock.now += 1
    await cache.get_or_compute("a", Counter())  # touch a
    clock.now += 1
    await cache.get_or_compute("c", Counter("c"))

    assert "a" in cache and "c" in cache
    assert "b" not in cache
    assert cache.stats()["evictions"] == 1
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_pending_entries_never_evicted() -> None:
    cache: ResultCache[str] = ResultCache(max_entries=1)
    held = [Counter(k) for k in ("a", "b")]
    for c in held:
        c.gate.clear()
    tasks = [asyncio.create_task(cache.get_or_compute(k, c)) for k, c in zip(("a", "b"), held)]
    await asyncio.sleep(0)

    assert cache.size == 2
    assert cache.state_of("a") is CacheState.PENDING and cache.state_of("b") is CacheState.PENDING

    for c in held:
        c.gate.set()
    assert [r.unwrap() for r in await asyncio.gather(*tasks)] == ["a", "b"]
    assert cache.size == 1


@pytest.mark.asyncio
async def test_invalidate_and_clear() -> None:
    cache: ResultCache[str] = ResultCache()
    await cache.get_or_compute("k", Counter())
    assert cache.invalidate("k")
    assert not cache.invalidate("k")
    await cache.get_or_compute("k", Counter())
    cache.clear()
    assert cache.size == 0


@pytest.mark.asyncio
async def test_aclose_cancels_in_flight() -> None:
    cache: ResultCache[str] = ResultCache()
    compute = Counter()
    compute.gate.clear()
    waiter = asyncio.create_task(cache.get_or_compute("k", compute))
    await asyncio.sleep(0)
    await cache.aclose()
    result = await waiter
    assert result.unwrap_err().code is ErrorCode.CANCELLED
