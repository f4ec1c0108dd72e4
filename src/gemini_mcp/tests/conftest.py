"""Shared fixtures: scripted upstream, echo registry, in-memory stdio."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable
from typing import Any

import orjson
import pytest

from gemini_mcp.foundation.config import clear_settings_cache
from gemini_mcp.foundation.registry import ArgumentSchema, PendingCall, ToolRegistry, ToolSpec, string
from gemini_mcp.foundation.testing import FakeUpstream, UpstreamCall
from gemini_mcp.io.cache import ResultCache
from gemini_mcp.mcp import Dispatcher
from gemini_mcp.runtime.retry import ExponentialBackoff, RetryExecutor, RetryPolicy


# ─── In-memory stdio ──────────────────────────────────────────────────────

class MemorySource:
    """Yields scripted lines, then end of input."""

    def __init__(self, lines: Iterable[bytes | str | dict[str, Any]]) -> None:
        self._lines = [_encode(line) for line in lines]

    async def readline(self) -> bytes:
        if self._lines:
            return self._lines.pop(0)
        return b""


class MemorySink:
    def __init__(self) -> None:
        self.chunks: list[bytes] = []

    async def write(self, data: bytes) -> None:
        self.chunks.append(data)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [orjson.loads(c) for c in self.chunks]

    def by_id(self) -> dict[Any, dict[str, Any]]:
        return {m["id"]: m for m in self.messages}


def _encode(line: bytes | str | dict[str, Any]) -> bytes:
    if isinstance(line, dict):
        return orjson.dumps(line) + b"\n"
    if isinstance(line, str):
        line = line.encode()
    return line if line.endswith(b"\n") else line + b"\n"


def call(req_id: Any, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    params: dict[str, Any] = {"name": name}
    if arguments is not None:
        params["arguments"] = arguments
    return {"jsonrpc": "2.0", "id": req_id, "method": "tools/call", "params": params}


# ─── Tools ────────────────────────────────────────────────────────────────

def echo_spec() -> ToolSpec:
    return ToolSpec(
        "echo",
        "Echo the text back",
        ArgumentSchema({"text": string("Text to echo", required=True)}),
        lambda args: PendingCall(prompt=args["text"]),
    )


def echo_prompt(c: UpstreamCall) -> str:
    return c.prompt


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(echo_spec())
    return reg.freeze()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream(responder=echo_prompt)


async def _no_sleep(_: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def executor() -> RetryExecutor:
    """Three attempts, no real waiting."""
    return RetryExecutor(RetryPolicy(max_attempts=3, backoff=ExponentialBackoff(base=0.01, jitter=0.0)), sleep=_no_sleep)


@pytest.fixture
def make_dispatcher(registry: ToolRegistry, upstream: FakeUpstream, executor: RetryExecutor):
    def factory(*, cache: bool = True, **kw: Any) -> Dispatcher:
        kw.setdefault("registry", registry)
        kw.setdefault("upstream", upstream)
        kw.setdefault("executor", executor)
        return Dispatcher(
            kw.pop("registry"),
            kw.pop("upstream"),
            cache=ResultCache(ttl=60, max_entries=32) if cache else None,
            **kw,
        )
    return factory


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterable[None]:
    """Isolate tests from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    for var in [v for v in os.environ if v.startswith("GEMINI_")]:
        monkeypatch.delenv(var, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
