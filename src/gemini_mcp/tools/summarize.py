"""Summarization tools.

``gemini-summarize`` keeps the older ``detail_level``/``format`` vocabulary
and maps it onto the v2 options; both tools share one prompt builder and one
result shape (summary, word count, key topics).
"""

from __future__ import annotations

import logging
from typing import Any

from gemini_mcp.foundation.registry import ArgumentSchema, PendingCall, ToolOutput, ToolSpec, string
from gemini_mcp.upstream import GenerationResponse, ModelPreference

from . import parsing
from .common import merge_params, model_field, params_field, preference, v2_shape

logger = logging.getLogger("gemini_mcp.tools")

SUMMARIZE = "gemini-summarize"
SUMMARIZE_V2 = "gemini-summarize-v2"

# length -> (instruction, default max output tokens)
LENGTHS: dict[str, tuple[str, int]] = {
    "brief": ("Provide a very brief, concise summary (2-3 sentences max).", 256),
    "medium": ("Provide a balanced summary with key points and main themes.", 1024),
    "detailed": ("Provide a comprehensive, detailed summary covering all key points and nuances.", 2048),
}
FORMATS: dict[str, str] = {
    "paragraph": "Format the summary as coherent paragraphs.",
    "bullet_points": "Format the summary as bullet points.",
    "executive": "Format as an executive summary with clear sections.",
    "key_points": "Extract and list only the key takeaways.",
    "outline": "Format the summary as a hierarchical outline.",
}

_LEGACY_LENGTHS = {"brief": "brief", "moderate": "medium", "detailed": "detailed"}
_LEGACY_FORMATS = {"bullets": "bullet_points", "paragraphs": "paragraph", "outline": "outline"}

SUMMARIZE_SCHEMA = ArgumentSchema({
    "content": string("The text content to summarize", required=True, min_length=1),
    "detail_level": string("How detailed the summary should be", default="moderate", choices=tuple(_LEGACY_LENGTHS)),
    "format": string("Summary layout", default="paragraphs", choices=tuple(_LEGACY_FORMATS)),
})

SUMMARIZE_V2_SCHEMA = ArgumentSchema({
    "content": string("The text content to summarize", required=True, min_length=1),
    "length": string("Summary length: brief, medium, or detailed", default="medium", choices=tuple(LENGTHS)),
    "format": string("Summary format: paragraph, bullet_points, executive, or key_points", default="paragraph",
                     choices=("paragraph", "bullet_points", "executive", "key_points")),
    "focus": string("Optional focus area for the summary"),
    "model": model_field(),
    "params": params_field(),
})


MAX_CONTENT_CHARS = 1_000_000


def content_size(args: dict[str, Any]) -> bool | str:
    return len(args["content"]) <= MAX_CONTENT_CHARS or f"content too large (max {MAX_CONTENT_CHARS:,} characters)"


def summary_result(response: GenerationResponse) -> dict[str, Any]:
    return {
        "summary": response.text,
        "word_count": parsing.word_count(response.text),
        "key_topics": parsing.extract_key_topics(response.text),
    }


def _pending(tool: str, content: str, length: str, fmt: str, focus: str | None, args: dict[str, Any]) -> PendingCall:
    instruction, max_tokens = LENGTHS[length]
    focus_line = f"\n\nFocus specifically on: {focus}" if focus else ""
    logger.debug(f"[{tool}] length={length} format={fmt} content_len={len(content)}")
    return PendingCall(
        prompt=f"Summarize the following content:\n\n{content}\n\n{instruction}\n\n{FORMATS[fmt]}{focus_line}",
        model=preference(args, ModelPreference.FLASH),
        params=merge_params(args, temperature=0.4, max_tokens=max_tokens),
        shape=v2_shape(tool, summary_result),
    )


def summarize_v2(args: dict[str, Any]) -> PendingCall:
    return _pending(SUMMARIZE_V2, args["content"], args["length"], args["format"], args.get("focus"), args)


def summarize(args: dict[str, Any]) -> PendingCall:
    pending = _pending(
        SUMMARIZE,
        args["content"],
        _LEGACY_LENGTHS[args["detail_level"]],
        _LEGACY_FORMATS[args["format"]],
        None,
        args,
    )
    # plain-text clients get the pretty JSON only
    v2 = pending.shape

    def shape(response: GenerationResponse) -> ToolOutput:
        return ToolOutput(v2(response).text)

    return PendingCall(pending.prompt, pending.model, pending.params, shape)


def specs() -> list[ToolSpec]:
    return [
        ToolSpec(SUMMARIZE, "Summarize content", SUMMARIZE_SCHEMA, summarize, constraints=(content_size,)),
        ToolSpec(SUMMARIZE_V2, "Enhanced summarization with key topics extraction and word count",
                 SUMMARIZE_V2_SCHEMA, summarize_v2),
    ]
