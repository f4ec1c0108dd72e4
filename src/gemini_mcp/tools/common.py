"""Shared pieces for the Gemini tools: common fields, parameter merging, v2 output."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import orjson

from gemini_mcp.foundation.errors import ErrorCode, ToolException
from gemini_mcp.foundation.registry import ToolOutput, integer, number, obj, string
from gemini_mcp.upstream import GenerationParams, GenerationResponse, ModelPreference

logger = logging.getLogger("gemini_mcp.tools")

MODEL_CHOICES = ("pro", "flash")


def model_field(default: str | None = None) -> Any:
    kw: dict[str, Any] = {"choices": MODEL_CHOICES}
    if default is not None:
        kw["default"] = default
    return string("Model preference", **kw)


def params_field() -> Any:
    return obj({
        "temperature": number("Temperature for generation (0.0-2.0)", minimum=0.0, maximum=2.0),
        "max_tokens": integer("Maximum tokens in response", minimum=1),
        "top_p": number("Top-p sampling parameter", minimum=0.0, maximum=1.0),
        "top_k": integer("Top-k sampling parameter", minimum=1),
    }, "Generation parameters")


def preference(args: Mapping[str, Any], default: ModelPreference = ModelPreference.PRO) -> ModelPreference:
    return ModelPreference.parse(args.get("model"), default)


def merge_params(args: Mapping[str, Any], *, temperature: float | None = None, max_tokens: int | None = None) -> GenerationParams:
    """Caller's ``params`` object over the tool's defaults."""
    p = args.get("params") or {}
    return GenerationParams(
        temperature=p.get("temperature", temperature),
        max_output_tokens=p.get("max_tokens", max_tokens),
        top_p=p.get("top_p"),
        top_k=p.get("top_k"),
    )


def pretty(value: Any) -> str:
    return orjson.dumps(value, option=orjson.OPT_INDENT_2).decode()


def v2_shape(tool_name: str, build: Callable[[GenerationResponse], dict[str, Any]]) -> Callable[[GenerationResponse], ToolOutput]:
    """Wrap a result builder into the ``{result, metadata}`` envelope."""

    def shape(response: GenerationResponse) -> ToolOutput:
        usage = response.usage
        envelope = {
            "result": build(response),
            "metadata": {
                "model_used": response.model,
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "response_tokens": usage.response_tokens if usage else 0,
                "total_tokens": usage.total_tokens if usage else 0,
            },
        }
        logger.debug(f"[{tool_name}] shaped {len(response.text)} chars")
        return ToolOutput(pretty(envelope), envelope)
    return shape


def require_text(tool_name: str) -> Callable[[GenerationResponse], ToolOutput]:
    """Plain-text shape that rejects blank replies."""

    def shape(response: GenerationResponse) -> ToolOutput:
        if not response.text.strip():
            raise ToolException.create(tool_name, "Empty response from Gemini API", ErrorCode.EMPTY_RESPONSE)
        return ToolOutput(response.text)
    return shape
