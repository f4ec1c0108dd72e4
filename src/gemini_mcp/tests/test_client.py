"""Tests for the Gemini HTTP adapter using httpx.MockTransport."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import orjson
import pytest

from gemini_mcp.foundation.config import UpstreamSettings
from gemini_mcp.foundation.errors import ErrorCode
from gemini_mcp.upstream import GeminiClient, GenerationParams, ModelCatalog, ModelPreference, Usage

OK_BODY = {
    "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "world"}]}, "finishReason": "STOP"}],
    "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2, "totalTokenCount": 6},
}


def _client(handler: Callable[[httpx.Request], httpx.Response], key: str | None = "secret") -> GeminiClient:
    return GeminiClient(key, base_url="https://example.test/v1beta", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_generate_success_request_shape() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=OK_BODY)

    async with _client(handler) as client:
        result = await client.generate("gemini-x", "Hi", GenerationParams(temperature=0.3, max_output_tokens=64))

    response = result.unwrap()
    assert response.text == "Hello world"
    assert response.model == "gemini-x"
    assert response.usage == Usage(4, 2, 6)
    assert response.finish_reason == "STOP"

    (request,) = seen
    assert request.url.path == "/v1beta/models/gemini-x:generateContent"
    assert request.headers["x-goog-api-key"] == "secret"
    body = orjson.loads(request.content)
    assert body["contents"] == [{"role": "user", "parts": [{"text": "Hi"}]}]
    assert body["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 64}


@pytest.mark.asyncio
async def test_default_params_send_no_generation_config() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(orjson.loads(request.content))
        return httpx.Response(200, json=OK_BODY)

    async with _client(handler) as client:
        await client.generate("m", "p", GenerationParams())
    assert "generationConfig" not in bodies[0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "code"),
    [
        (429, {"error": {"message": "Resource exhausted"}}, ErrorCode.RATE_LIMITED),
        (500, {"error": {"message": "Internal"}}, ErrorCode.SERVER_ERROR),
        (503, "unavailable", ErrorCode.SERVER_ERROR),
        (401, {"error": {"message": "unauthenticated"}}, ErrorCode.API_KEY_INVALID),
        (400, {"error": {"message": "API key not valid. Please pass a valid API key."}}, ErrorCode.API_KEY_INVALID),
        (400, {"error": {"message": "Invalid argument"}}, ErrorCode.INVALID_REQUEST),
        (403, {"error": {"message": "denied"}}, ErrorCode.PERMISSION_DENIED),
        (404, {"error": {"message": "model not found"}}, ErrorCode.NOT_FOUND),
    ],
)
async def test_status_mapping(status: int, body: dict | str, code: ErrorCode) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    async with _client(handler) as client:
        error = (await client.generate("m", "p")).unwrap_err()
    assert error.code is code
    assert str(status) in error.message


@pytest.mark.asyncio
async def test_transport_errors_are_retryable() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(timeout) as client:
        assert (await client.generate("m", "p")).unwrap_err().code is ErrorCode.TIMEOUT
    async with _client(refused) as client:
        error = (await client.generate("m", "p")).unwrap_err()
    assert error.code is ErrorCode.NETWORK_ERROR
    assert error.retryable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("content", "code"),
    [
        (b"not json", ErrorCode.PARSE_ERROR),
        (b"[]", ErrorCode.PARSE_ERROR),
        (orjson.dumps({"candidates": []}), ErrorCode.EMPTY_RESPONSE),
        (orjson.dumps({"candidates": [{"finishReason": "SAFETY"}]}), ErrorCode.EMPTY_RESPONSE),
        (orjson.dumps({"candidates": [{"content": "oops"}]}), ErrorCode.PARSE_ERROR),
        (orjson.dumps({"candidates": [{"content": {"parts": "oops"}}]}), ErrorCode.PARSE_ERROR),
        (orjson.dumps({"candidates": ["oops"]}), ErrorCode.PARSE_ERROR),
        (orjson.dumps({"candidates": "oops"}), ErrorCode.PARSE_ERROR),
        (orjson.dumps({"candidates": [], "promptFeedback": "blocked"}), ErrorCode.PARSE_ERROR),
        (orjson.dumps({"candidates": [], "usageMetadata": {"totalTokenCount": "many"}}), ErrorCode.PARSE_ERROR),
    ],
)
async def test_bad_bodies(content: bytes, code: ErrorCode) -> None:
    async with _client(lambda r: httpx.Response(200, content=content)) as client:
        error = (await client.generate("m", "p")).unwrap_err()
    assert error.code is code
    assert not error.retryable


@pytest.mark.asyncio
async def test_null_token_counts_read_as_zero() -> None:
    body = {**OK_BODY, "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": None}}
    async with _client(lambda r: httpx.Response(200, json=body)) as client:
        response = (await client.generate("m", "p")).unwrap()
    assert response.usage == Usage(4, 0, 0)


@pytest.mark.asyncio
async def test_missing_key_never_calls_api() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=OK_BODY)

    async with _client(handler, key=None) as client:
        error = (await client.generate("m", "p")).unwrap_err()
    assert error.code is ErrorCode.API_KEY_MISSING
    assert calls == 0


@pytest.mark.asyncio
async def test_ping_accepts_empty_reply() -> None:
    async with _client(lambda r: httpx.Response(200, json={"candidates": []})) as client:
        assert (await client.ping()).unwrap() == client.catalog.pro
    async with _client(lambda r: httpx.Response(401, json={"error": {"message": "bad key"}})) as client:
        assert (await client.ping()).unwrap_err().code is ErrorCode.API_KEY_INVALID


def test_from_settings_and_catalog() -> None:
    settings = UpstreamSettings(api_key="k", pro_model="p-1", flash_model="f-1", timeout=5)
    client = GeminiClient.from_settings(settings)
    assert client.catalog == ModelCatalog(pro="p-1", flash="f-1")
    assert client.catalog.resolve(ModelPreference.FLASH) == "f-1"
    assert client.catalog.resolve("gemini-flash-latest") == "f-1"
    assert client.catalog.resolve("anything") == "p-1"
