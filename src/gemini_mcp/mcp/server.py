"""Stdio MCP server: sequential reads, concurrent execution, one response per request.

Lines are read one at a time. Each accepted request runs in its own task and
its response is written whole, through a write lock, as soon as it completes
(so responses appear in completion order). Malformed lines are answered with
a protocol error and the loop keeps going. At end of input, in-flight
requests get ``drain_timeout`` seconds to finish; what remains is cancelled
and its responses are dropped.

tools/call pipeline:
    resolve -> validate -> handler -> PendingCall
        -> cache (fingerprint of upstream request) -> retry executor -> upstream
        -> shape -> {content, structuredContent?, _meta}

Example:
    >>> dispatcher = Dispatcher(build_default_registry(), GeminiClient(key))
    >>> await dispatcher.serve(StdinSource(), StdoutSink())
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol

from gemini_mcp.foundation.errors import Err, ErrorCode, ErrorKind, Ok, Result, ToolError, ToolException
from gemini_mcp.foundation.registry import PendingCall, ToolRegistry, ToolSpec, invalid_arguments
from gemini_mcp.io.cache import ResultCache, fingerprint
from gemini_mcp.mcp.protocol import PROTOCOL_VERSION, SERVER_INFO, Request, Response, parse_line, protocol_error
from gemini_mcp.runtime.observability import log_context
from gemini_mcp.runtime.retry import RetryExecutor, RetryPolicy
from gemini_mcp.upstream import GenerationParams, GenerationResponse, ModelCatalog

if TYPE_CHECKING:
    from gemini_mcp.foundation.config import GeminiMcpSettings

logger = logging.getLogger("gemini_mcp.server")

DEFAULT_MAX_LINE_BYTES = 4 * 1024 * 1024
Payload = dict[str, Any]


# ═══════════════════════════════════════════════════════════════════════════════
# Transport seams
# ═══════════════════════════════════════════════════════════════════════════════


class Upstream(Protocol):
    """What the dispatcher needs from the model backend."""
    catalog: ModelCatalog

    async def generate(
        self, model: str, prompt: str, params: GenerationParams | None = None,
    ) -> Result[GenerationResponse, ToolError]: ...

    async def aclose(self) -> None: ...


class LineSource(Protocol):
    async def readline(self) -> bytes:
        """Next line including its newline; empty bytes at end of input."""
        ...


class LineSink(Protocol):
    async def write(self, data: bytes) -> None: ...


class StdinSource:
    """Blocking stdin reads moved to a worker thread.

    Lines longer than ``max_line_bytes`` are consumed through their newline
    and returned truncated, still over the limit, so the dispatcher can reject
    them without holding the whole line in memory.
    """

    __slots__ = ("_stream", "_limit")

    def __init__(self, stream: BinaryIO | None = None, *, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self._stream = stream or sys.stdin.buffer
        self._limit = max_line_bytes

    def _readline(self) -> bytes:
        line = self._stream.readline(self._limit + 1)
        if len(line) > self._limit and not line.endswith(b"\n"):
            while (chunk := self._stream.readline(64 * 1024)) and not chunk.endswith(b"\n"):
                pass
        return line

    async def readline(self) -> bytes:
        return await asyncio.to_thread(self._readline)


class StdoutSink:
    __slots__ = ("_stream",)

    def __init__(self, stream: BinaryIO | None = None) -> None:
        self._stream = stream or sys.stdout.buffer

    def _write(self, data: bytes) -> None:
        self._stream.write(data)
        self._stream.flush()

    async def write(self, data: bytes) -> None:
        await asyncio.to_thread(self._write, data)


# ═══════════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════════


class Dispatcher:
    """Routes JSON-RPC requests to tools.

    Args:
        registry: Frozen tool registry
        upstream: Model backend (GeminiClient or a test double)
        executor: Retry executor wrapped around every upstream call
        cache: Result cache; None disables caching
        catalog: Model preference -> model id (defaults to the upstream's)
        request_timeout: Bound on one request in seconds
        drain_timeout: Grace period for in-flight requests at end of input
        max_line_bytes: Longest accepted input line
    """

    def __init__(
        self,
        registry: ToolRegistry,
        upstream: Upstream,
        *,
        executor: RetryExecutor | None = None,
        cache: ResultCache[Payload] | None = None,
        catalog: ModelCatalog | None = None,
        request_timeout: float | None = 300.0,
        drain_timeout: float = 10.0,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> None:
        self.registry = registry
        self.upstream = upstream
        self.executor = executor or RetryExecutor()
        self.cache = cache
        self.catalog = catalog or upstream.catalog
        self.request_timeout = request_timeout
        self.drain_timeout = drain_timeout
        self.max_line_bytes = max_line_bytes
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: GeminiMcpSettings, registry: ToolRegistry, upstream: Upstream) -> Dispatcher:
        cache: ResultCache[Payload] | None = None
        if settings.cache.enabled:
            cache = ResultCache(ttl=settings.cache.ttl, max_entries=settings.cache.max_entries)
        return cls(
            registry,
            upstream,
            executor=RetryExecutor(RetryPolicy.from_settings(settings.retry, attempt_timeout=settings.upstream.timeout)),
            cache=cache,
            catalog=ModelCatalog.from_settings(settings.upstream),
            request_timeout=settings.server.request_timeout,
            drain_timeout=settings.server.drain_timeout,
            max_line_bytes=settings.server.max_line_bytes,
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ─────────────────────────────────────────────────────────────────
    # Loop
    # ─────────────────────────────────────────────────────────────────

    async def serve(self, source: LineSource, sink: LineSink) -> None:
        """Process lines until end of input, then drain and close the upstream."""
        logger.info(f"Serving {len(self.registry)} tools over stdio")
        try:
            while line := await source.readline():
                await self.accept(line, sink)
        finally:
            await self.drain()
            if self.cache is not None:
                await self.cache.aclose()
            await self.upstream.aclose()
            logger.info("Server stopped")

    async def accept(self, line: bytes, sink: LineSink) -> None:
        """Handle one input line: answer it inline if malformed, else start its task."""
        body = line.rstrip(b"\r\n")
        if not body.strip():
            return
        if len(body) > self.max_line_bytes:
            logger.warning(f"Rejected {len(body)}+ byte line (limit {self.max_line_bytes})")
            await self.send(sink, Response.failure(None, protocol_error(
                f"Invalid Request: line exceeds {self.max_line_bytes} bytes")))
            return

        parsed = parse_line(body)
        if parsed.is_err():
            response = parsed.unwrap_err()
            logger.warning(f"Malformed request: {response.error['message']}")  # type: ignore[index]
            await self.send(sink, response)
            return

        request = parsed.unwrap()
        if request.is_notification:
            logger.debug(f"Notification {request.method}")
            return
        task = asyncio.create_task(self._respond(request, sink), name=f"request-{request.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        if not self._tasks:
            return
        tasks = set(self._tasks)
        logger.info(f"Draining {len(tasks)} in-flight request(s) for up to {self.drain_timeout}s")
        _, pending = await asyncio.wait(tasks, timeout=self.drain_timeout)
        if pending:
            logger.warning(f"Abandoning {len(pending)} request(s) after drain timeout")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def send(self, sink: LineSink, response: Response) -> None:
        async with self._write_lock:
            try:
                await sink.write(response.encode())
            except (OSError, ValueError) as e:
                logger.error(f"Failed to write response {response.id}: {e}")

    async def _respond(self, request: Request, sink: LineSink) -> None:
        with log_context(request_id=request.id, method=request.method):
            response = await self.handle(request)
            await self.send(sink, response)

    # ─────────────────────────────────────────────────────────────────
    # Methods
    # ─────────────────────────────────────────────────────────────────

    async def handle(self, request: Request) -> Response:
        """Exactly one Response for a request; never raises (except on cancellation)."""
        try:
            async with asyncio.timeout(self.request_timeout):
                result = await self._route(request)
        except TimeoutError:
            result = Err(ToolError.create(
                _tool_name(request), f"Request timed out after {self.request_timeout}s",
                ErrorCode.TIMEOUT, kind=ErrorKind.TIMEOUT,
            ))
        except Exception as e:
            logger.exception(f"Unhandled error in {request.method}")
            result = Err(ToolError.create(_tool_name(request), f"Internal error: {e}", ErrorCode.UNKNOWN))

        if result.is_ok():
            return Response.success(request.id, result.unwrap())
        error = result.unwrap_err()
        logger.info(f"Request {request.id} failed: {error.render()}")
        return Response.failure(request.id, error)

    async def _route(self, request: Request) -> Result[Any, ToolError]:
        match request.method:
            case "initialize":
                return Ok({
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"tools": {"listChanged": False}},
                    "serverInfo": SERVER_INFO,
                })
            case "ping":
                return Ok({})
            case "tools/list":
                return Ok({"tools": self.registry.list_tools()})
            case "tools/call":
                return await self.call_tool(request.params)
            case method:
                return Err(ToolError.create(
                    method, f"Method not found: {method}", ErrorCode.NOT_FOUND, kind=ErrorKind.METHOD_NOT_FOUND,
                ))

    async def call_tool(self, params: Any) -> Result[Payload, ToolError]:
        """Resolve, validate and run one tool invocation."""
        if not isinstance(params, Mapping) or not isinstance(name := params.get("name"), str):
            return Err(_bad_call("tools/call params must be an object with a string 'name'"))
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            return Err(_bad_call("tools/call 'arguments' must be an object", name))

        resolved = self.registry.resolve(name)
        if resolved.is_err():
            return Err(resolved.unwrap_err())
        spec = resolved.unwrap()

        validated = self.registry.validate(spec, arguments)
        if validated.is_err():
            return Err(invalid_arguments(name, validated.unwrap_err()))
        args = validated.unwrap()

        with log_context(tool=name):
            try:
                pending = spec.handler(args)
            except ToolException as e:
                return Err(e.error)

            model_id = self.catalog.resolve(pending.model)
            if self.cache is None or not spec.cacheable:
                return await self._execute(spec, pending, model_id)
            key = _call_fingerprint(name, args, pending, model_id)
            return await self.cache.get_or_compute(
                key, lambda: self._execute(spec, pending, model_id), timeout=self.request_timeout,
            )

    async def _execute(self, spec: ToolSpec, pending: PendingCall, model_id: str) -> Result[Payload, ToolError]:
        result = await self.executor.execute(
            lambda: self.upstream.generate(model_id, pending.prompt, pending.params),
            label=spec.name,
            idempotent=True,
        )
        if result.is_err():
            error = result.unwrap_err()
            return Err(error.model_copy(update={"tool_name": spec.name}))

        response = result.unwrap()
        try:
            output = pending.shape(response)
        except ToolException as e:
            return Err(e.error)
        except Exception as e:
            logger.exception(f"[{spec.name}] Failed to shape response")
            return Err(ToolError.create(spec.name, f"Could not interpret model response: {e}", ErrorCode.PARSE_ERROR))

        meta: dict[str, Any] = {"model": response.model}
        if response.usage is not None:
            meta["usage"] = response.usage.to_dict()
        payload: Payload = {"content": [{"type": "text", "text": output.text}], "_meta": meta}
        if output.structured is not None:
            payload["structuredContent"] = output.structured
        return Ok(payload)


def _tool_name(request: Request) -> str:
    if request.method == "tools/call" and isinstance(request.params, Mapping):
        name = request.params.get("name")
        return name if isinstance(name, str) else ""
    return request.method


def _bad_call(message: str, name: str = "") -> ToolError:
    return ToolError.create(name, message, ErrorCode.INVALID_PARAMS, kind=ErrorKind.INVALID_ARGUMENTS)


# Arguments whose whole effect is captured by the resolved model id and request params
_UPSTREAM_ARGUMENTS = frozenset({"model", "params"})


def _call_fingerprint(name: str, args: Mapping[str, Any], pending: PendingCall, model_id: str) -> str:
    """Key a call by what reaches the upstream plus the arguments that only shape the output.

    Spelling a default out (``model: "pro"``, ``params: {}``) resolves to the
    same request as leaving it off, so both share one cache entry.
    """
    shaping = {k: v for k, v in args.items() if k not in _UPSTREAM_ARGUMENTS}
    request = {"prompt": pending.prompt, "params": pending.params.to_payload()}
    return fingerprint(name, shaping, model_id, request)
