"""Request-level result cache with fan-in.

At most one computation runs per fingerprint: the first caller inserts a
Pending entry and starts the computation in a background task; concurrent
callers for the same fingerprint wait on that entry's shared future.

Lifecycle:
    (absent) --first request--> PENDING --ok--> READY --ttl/lru--> (absent)
                                        --err--> FAILED --broadcast--> (absent)

Failures are broadcast to the waiters of that one computation and then
dropped, so the next request retries. Ready entries expire lazily after
``ttl`` seconds and are evicted least-recently-accessed first once the
entry count exceeds ``max_entries``. Pending entries are never evicted.

All state transitions happen on the event loop between awaits, so no lock is
needed and unrelated fingerprints never contend.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

import orjson

from gemini_mcp.foundation.errors import Err, ErrorCode, ErrorKind, Ok, Result, ToolError

logger = logging.getLogger("gemini_mcp.cache")

DEFAULT_TTL: float = 3600.0
T = TypeVar("T")


def fingerprint(
    tool_name: str,
    arguments: Mapping[str, Any],
    model: str | None = None,
    request: Mapping[str, Any] | None = None,
) -> str:
    """SHA-256 over canonical JSON of tool name, normalized arguments, model id
    and (when given) the request actually sent upstream.
    """
    canonical = orjson.dumps(
        {"tool": tool_name, "arguments": arguments, "model": model, "request": request},
        option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS,
    )
    return hashlib.sha256(canonical).hexdigest()


class CacheState(StrEnum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """One fingerprint's slot. Only the compute task transitions ``state``."""
    fingerprint: str
    future: asyncio.Future[Result[T, ToolError]]
    created_at: float
    last_access: float
    state: CacheState = CacheState.PENDING
    value: T | None = None

    def expired(self, now: float, ttl: float) -> bool:
        return self.state is CacheState.READY and now - self.created_at > ttl


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    joins: int = 0
    evictions: int = 0
    expirations: int = 0
    failures: int = 0


class ResultCache(Generic[T]):
    """In-memory fingerprint -> result cache for one event loop.

    Args:
        ttl: Seconds a Ready entry stays valid, counted from when it became Ready
        max_entries: Entry count above which Ready entries are evicted (LRU)
        clock: Monotonic time source, injectable for tests

    Example:
        >>> cache = ResultCache(ttl=60, max_entries=100)
        >>> result = await cache.get_or_compute(fp, lambda: run_tool(), timeout=30)
    """

    __slots__ = ("_entries", "_ttl", "_max_entries", "_clock", "_tasks", "_stats")

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        max_entries: int = 256,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()
        self._stats = CacheStats()

    # ─────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Result[T, ToolError]]],
        *,
        timeout: float | None = None,
    ) -> Result[T, ToolError]:
        """Return the cached value, join an in-flight computation, or start one."""
        now = self._clock()
        entry = self._lookup(key, now)

        if entry is not None:
            entry.last_access = now
            self._entries.move_to_end(key)
            if entry.state is CacheState.READY:
                self._stats.hits += 1
                logger.debug(f"Cache hit {key[:12]}")
                return Ok(entry.value)  # type: ignore[arg-type]
            self._stats.joins += 1
            logger.debug(f"Joining in-flight computation {key[:12]}")
        else:
            self._stats.misses += 1
            entry = self._start(key, compute, now)

        return await self._wait(entry, timeout)

    def _lookup(self, key: str, now: float) -> CacheEntry[T] | None:
        if (entry := self._entries.get(key)) is not None and entry.expired(now, self._ttl):
            del self._entries[key]
            self._stats.expirations += 1
            return None
        return entry

    def _start(self, key: str, compute: Callable[[], Awaitable[Result[T, ToolError]]], now: float) -> CacheEntry[T]:
        loop = asyncio.get_running_loop()
        entry: CacheEntry[T] = CacheEntry(key, loop.create_future(), created_at=now, last_access=now)
        self._entries[key] = entry
        task = loop.create_task(self._run(entry, compute), name=f"cache-compute-{key[:12]}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._enforce_capacity()
        return entry

    async def _wait(self, entry: CacheEntry[T], timeout: float | None) -> Result[T, ToolError]:
        # shield: a caller giving up must not cancel the shared computation
        try:
            async with asyncio.timeout(timeout):
                return await asyncio.shield(entry.future)
        except TimeoutError:
            return Err(ToolError.create(
                "cache", f"Timed out after {timeout}s waiting for result", ErrorCode.TIMEOUT, kind=ErrorKind.TIMEOUT,
            ))

    async def _run(self, entry: CacheEntry[T], compute: Callable[[], Awaitable[Result[T, ToolError]]]) -> None:
        try:
            result = await compute()
        except asyncio.CancelledError:
            self._settle(entry, Err(ToolError.create("cache", "Computation cancelled", ErrorCode.CANCELLED)))
            raise
        except Exception as e:
            logger.exception(f"Computation for {entry.fingerprint[:12]} raised")
            result = Err(ToolError.from_exception("cache", e))
        self._settle(entry, result)

    def _settle(self, entry: CacheEntry[T], result: Result[T, ToolError]) -> None:
        if result.is_ok():
            entry.state, entry.value = CacheState.READY, result.unwrap()
            entry.created_at = entry.last_access = self._clock()
        else:
            entry.state = CacheState.FAILED
            self._stats.failures += 1
            if self._entries.get(entry.fingerprint) is entry:
                del self._entries[entry.fingerprint]
        if not entry.future.done():
            entry.future.set_result(result)
        if result.is_ok():
            self._enforce_capacity()

    # ─────────────────────────────────────────────────────────────────
    # Eviction
    # ─────────────────────────────────────────────────────────────────

    def _enforce_capacity(self) -> None:
        if len(self._entries) <= self._max_entries:
            return
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expired(now, self._ttl)]:
            del self._entries[key]
            self._stats.expirations += 1
        # OrderedDict order is access order: oldest first
        while len(self._entries) > self._max_entries:
            victim = next((k for k, e in self._entries.items() if e.state is CacheState.READY), None)
            if victim is None:
                break
            del self._entries[victim]
            self._stats.evictions += 1
            logger.debug(f"Evicted {victim[:12]} (capacity {self._max_entries})")

    # ─────────────────────────────────────────────────────────────────
    # Management
    # ─────────────────────────────────────────────────────────────────

    def invalidate(self, key: str) -> bool:
        """Drop a Ready entry. Pending computations are left to finish."""
        entry = self._entries.get(key)
        if entry is None or entry.state is CacheState.PENDING:
            return False
        del self._entries[key]
        return True

    def clear(self) -> None:
        """Drop all entries. In-flight computations still answer their waiters."""
        self._entries.clear()

    async def aclose(self) -> None:
        """Cancel in-flight computations (shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def state_of(self, key: str) -> CacheState | None:
        return entry.state if (entry := self._entries.get(key)) is not None else None

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, object]:
        """Get cache statistics for monitoring."""
        s = self._stats
        pending = sum(1 for e in self._entries.values() if e.state is CacheState.PENDING)
        return {
            "hits": s.hits,
            "misses": s.misses,
            "joins": s.joins,
            "evictions": s.evictions,
            "expirations": s.expirations,
            "failures": s.failures,
            "size": len(self._entries),
            "pending": pending,
            "ttl": self._ttl,
            "max_entries": self._max_entries,
        }
