"""Async adapter for the Gemini ``generateContent`` REST endpoint.

Performs exactly one HTTP call per ``generate`` and maps every failure into a
ToolError with an ErrorCode the retry executor can classify. No retries or
caching here: those belong to the layers above.

Example:
    >>> async with GeminiClient("key") as client:
    ...     result = await client.generate("gemini-3-flash-preview", "Hello")
    ...     print(result.unwrap().text)
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Self

import httpx
import orjson

from gemini_mcp.foundation.errors import Err, ErrorCode, Ok, Result, ToolError
from gemini_mcp.upstream.models import ModelCatalog, ModelPreference
from gemini_mcp.upstream.types import GenerationParams, GenerationResponse, Usage

if TYPE_CHECKING:
    from gemini_mcp.foundation.config import UpstreamSettings

logger = logging.getLogger("gemini_mcp.upstream")

_SOURCE = "gemini"
_SERVER_ERRORS = frozenset({500, 502, 503, 504})
_INVALID_KEY_MARKERS = ("API_KEY_INVALID", "API key not valid", "API key expired")


class GeminiClient:
    """Shared-connection client for one API key."""

    __slots__ = ("_api_key", "_base_url", "_timeout", "_limits", "_transport", "_client", "catalog")

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        max_connections: int = 10,
        catalog: ModelCatalog | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.catalog = catalog or ModelCatalog()

    @classmethod
    def from_settings(cls, settings: UpstreamSettings, *, transport: httpx.AsyncBaseTransport | None = None) -> Self:
        return cls(
            settings.api_key.get_secret_value() if settings.api_key else None,
            base_url=settings.base_url,
            timeout=settings.timeout,
            max_connections=settings.max_connections,
            catalog=ModelCatalog.from_settings(settings),
            transport=transport,
        )

    # ─────────────────────────────────────────────────────────────────
    # HTTP Client
    # ─────────────────────────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the pooled httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                limits=self._limits,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────────────────────────────

    async def generate(
        self, model: str, prompt: str, params: GenerationParams | None = None,
    ) -> Result[GenerationResponse, ToolError]:
        """Issue one generateContent call."""
        if not self._api_key:
            return Err(ToolError.create(_SOURCE, "GEMINI_API_KEY is not set", ErrorCode.API_KEY_MISSING))

        body: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if params is not None and (config := params.to_payload()):
            body["generationConfig"] = config

        start = time.perf_counter()
        try:
            response = await self._get_client().post(
                f"/models/{model}:generateContent",
                content=orjson.dumps(body),
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.TimeoutException:
            return Err(ToolError.create(_SOURCE, f"Request timed out after {self._timeout}s", ErrorCode.TIMEOUT))
        except httpx.TransportError as e:
            return Err(ToolError.create(_SOURCE, f"Network error: {str(e) or type(e).__name__}", ErrorCode.NETWORK_ERROR))

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"[{model}] HTTP {response.status_code} in {elapsed_ms:.0f}ms")

        if response.status_code != 200:
            return Err(_status_error(response))
        return _parse_body(model, response.content)

    async def ping(self) -> Result[str, ToolError]:
        """Verify the key with a minimal call. Returns the model id that answered."""
        model = self.catalog.resolve(ModelPreference.PRO)
        logger.info(f"Testing connection to Gemini API ({model})...")
        result = await self.generate(model, "Test", GenerationParams(max_output_tokens=16))
        # Any parsed reply, even an empty one, proves the key works
        if result.is_ok() or result.unwrap_err().code is ErrorCode.EMPTY_RESPONSE:
            logger.info("Connection test successful")
            return Ok(model)
        return Err(result.unwrap_err())


def _error_message(response: httpx.Response) -> str:
    """Pull ``error.message`` from a Google error body, else the raw text."""
    try:
        data = orjson.loads(response.content)
    except orjson.JSONDecodeError:
        return response.text.strip()[:500] or response.reason_phrase
    if isinstance(data, dict) and isinstance(err := data.get("error"), dict):
        return str(err.get("message") or err.get("status") or response.reason_phrase)
    return response.text.strip()[:500]


def _status_error(response: httpx.Response) -> ToolError:
    status = response.status_code
    detail = f"Gemini API error {status}: {_error_message(response)}"
    match status:
        case 429:
            code = ErrorCode.RATE_LIMITED
        case s if s in _SERVER_ERRORS:
            code = ErrorCode.SERVER_ERROR
        case 401:
            code = ErrorCode.API_KEY_INVALID
        case 400 if any(m in response.text for m in _INVALID_KEY_MARKERS):
            code = ErrorCode.API_KEY_INVALID
        case 403:
            code = ErrorCode.PERMISSION_DENIED
        case 404:
            code = ErrorCode.NOT_FOUND
        case s if 400 <= s < 500:
            code = ErrorCode.INVALID_REQUEST
        case _:
            code = ErrorCode.UNKNOWN
    logger.debug(f"Upstream rejected request: {status} -> {code}")
    return ToolError.create(_SOURCE, detail, code)


def _shape_error() -> Result[GenerationResponse, ToolError]:
    return Err(ToolError.create(_SOURCE, "Unexpected response shape from Gemini API", ErrorCode.PARSE_ERROR))


def _parse_body(model: str, content: bytes) -> Result[GenerationResponse, ToolError]:
    try:
        data = orjson.loads(content)
    except orjson.JSONDecodeError as e:
        return Err(ToolError.create(_SOURCE, f"Invalid JSON from Gemini API: {e}", ErrorCode.PARSE_ERROR))
    if not isinstance(data, dict):
        return _shape_error()

    usage = None
    if isinstance(meta := data.get("usageMetadata"), dict):
        try:
            usage = Usage.from_metadata(meta)
        except (TypeError, ValueError):
            return _shape_error()
        logger.debug(
            f"Tokens - prompt: {usage.prompt_tokens}, response: {usage.response_tokens}, total: {usage.total_tokens}"
        )

    candidates = data.get("candidates") or []
    feedback = data.get("promptFeedback") or {}
    if not isinstance(candidates, list) or not isinstance(feedback, dict):
        return _shape_error()
    first = candidates[0] if candidates else {}
    body = (first.get("content") or {}) if isinstance(first, dict) else None
    parts = (body.get("parts") or []) if isinstance(body, dict) else None
    if not isinstance(parts, list):
        return _shape_error()

    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    if not texts:
        reason = feedback.get("blockReason") or first.get("finishReason")
        message = f"Gemini API returned no text ({reason})" if reason else "Gemini API returned no text"
        return Err(ToolError.create(_SOURCE, message, ErrorCode.EMPTY_RESPONSE))

    return Ok(GenerationResponse(
        text="".join(texts),
        model=model,
        usage=usage,
        finish_reason=first.get("finishReason"),
        raw=data,
    ))
