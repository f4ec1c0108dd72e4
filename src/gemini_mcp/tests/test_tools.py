"""Tests for the Gemini tools: schemas, prompts, parameters and result shaping."""

from __future__ import annotations

from typing import Any

import orjson
import pytest

from gemini_mcp.foundation.config import GeminiMcpSettings
from gemini_mcp.foundation.testing import FakeUpstream
from gemini_mcp.mcp import Dispatcher, Response, parse_line
from gemini_mcp.tools import TOOL_NAMES, build_default_registry, parsing
from gemini_mcp.tools.summarize import MAX_CONTENT_CHARS
from gemini_mcp.upstream import GenerationParams, ModelCatalog

from .conftest import call

CATALOG = ModelCatalog()


@pytest.fixture
def tools(make_dispatcher):
    """Dispatcher over the real tool set; the reply text is scripted per test."""

    def factory(reply: str = "ok", **kw: Any) -> tuple[Dispatcher, FakeUpstream]:
        fake = FakeUpstream(default=reply)
        return make_dispatcher(registry=build_default_registry(), upstream=fake, **kw), fake
    return factory


async def _call(dispatcher: Dispatcher, name: str, arguments: dict[str, Any]) -> Response:
    return await dispatcher.handle(parse_line(orjson.dumps(call(1, name, arguments))).unwrap())


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════


def test_all_tools_listed_in_order() -> None:
    descriptors = build_default_registry().list_tools()
    assert [d["name"] for d in descriptors] == list(TOOL_NAMES)
    assert len(descriptors) == 9
    assert all(d["inputSchema"]["type"] == "object" and d["description"] for d in descriptors)


def test_strict_mode_follows_settings() -> None:
    settings = GeminiMcpSettings(server={"strict_arguments": True})
    registry = build_default_registry(settings)
    spec = registry.get("gemini-query")
    assert registry.validate(spec, {"prompt": "p", "extra": 1}).is_err()
    assert build_default_registry(settings, strict=False).validate(spec, {"prompt": "p", "extra": 1}).is_ok()


# ═════════════════════════════════════════════════════════════════════════════
# gemini-query / gemini-search-v2
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_query_passes_prompt_model_and_params(tools) -> None:
    dispatcher, fake = tools("The answer is 4")
    reply = await _call(dispatcher, "gemini-query", {"prompt": "2+2?", "model": "flash", "temperature": 0.5})
    assert reply.result["content"] == [{"type": "text", "text": "The answer is 4"}]
    assert reply.result["_meta"]["model"] == CATALOG.flash
    (upstream_call,) = fake.calls
    assert upstream_call.prompt == "2+2?"
    assert upstream_call.model == CATALOG.flash
    assert upstream_call.params == GenerationParams(temperature=0.5)


@pytest.mark.asyncio
async def test_query_rejects_blank_reply(tools) -> None:
    dispatcher, _ = tools("   ")
    reply = await _call(dispatcher, "gemini-query", {"prompt": "hi"})
    assert reply.error["data"]["code"] == "EMPTY_RESPONSE"
    assert reply.error["message"] == "Empty response from Gemini API"


@pytest.mark.asyncio
async def test_query_argument_errors(tools) -> None:
    dispatcher, fake = tools()
    reply = await _call(dispatcher, "gemini-query", {"prompt": "hi", "model": "ultra", "temperature": 3})
    assert reply.error["code"] == -32602
    assert "model" in reply.error["message"] and "temperature" in reply.error["message"]
    assert fake.call_count == 0


SOURCES = [
    {"id": "src-alpha", "title": "Alpha Report", "content": "The quick brown fox jumps over the lazy dog."},
    {"id": "src-beta", "title": "Beta Notes", "content": "Nothing relevant here at all."},
]
SEARCH_REPLY = 'Answer: Alpha is right\n\nThe Alpha Report says "the quick brown fox jumps over" clearly.'


@pytest.mark.asyncio
async def test_search_results_and_citations(tools) -> None:
    dispatcher, fake = tools(SEARCH_REPLY)
    reply = await _call(dispatcher, "gemini-search-v2", {"query": "who is right?", "sources": SOURCES})
    structured = reply.result["structuredContent"]
    result = structured["result"]
    assert result["answer"] == "Alpha is right"
    assert [r["source_id"] for r in result["results"]] == ["src-alpha"]
    assert result["results"][0]["relevance_score"] == 0.7
    assert result["citations"] == [
        {"source_id": "src-alpha", "source_title": "Alpha Report", "quote": "the quick brown fox jumps over"},
    ]
    assert structured["metadata"] == {
        "model_used": CATALOG.pro, "prompt_tokens": 3, "response_tokens": 5, "total_tokens": 8,
    }
    assert orjson.loads(reply.result["content"][0]["text"]) == structured
    prompt = fake.prompts[0]
    assert "Query: who is right?" in prompt and "(ID: src-beta)" in prompt
    assert fake.calls[0].params == GenerationParams(temperature=0.3, max_output_tokens=2048)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("extra", "expected_results", "expected_citations"),
    [
        ({"filters": {"max_results": 0}}, 0, 1),
        ({"filters": {"min_relevance": 0.8}}, 0, 1),
        ({"include_citations": False}, 1, 0),
    ],
)
async def test_search_filters(tools, extra: dict, expected_results: int, expected_citations: int) -> None:
    dispatcher, _ = tools(SEARCH_REPLY)
    reply = await _call(dispatcher, "gemini-search-v2", {"query": "q", "sources": SOURCES, **extra})
    result = reply.result["structuredContent"]["result"]
    assert len(result["results"]) == expected_results
    assert len(result["citations"]) == expected_citations


@pytest.mark.asyncio
async def test_search_source_filter_without_match(tools) -> None:
    dispatcher, fake = tools()
    reply = await _call(dispatcher, "gemini-search-v2", {
        "query": "q", "sources": SOURCES, "filters": {"source_ids": ["missing"]},
    })
    assert reply.error["code"] == -32602
    assert reply.error["message"] == "No sources match the filter criteria"
    assert fake.call_count == 0


@pytest.mark.asyncio
async def test_search_source_filter_narrows_prompt(tools) -> None:
    dispatcher, fake = tools(SEARCH_REPLY)
    await _call(dispatcher, "gemini-search-v2", {"query": "q", "sources": SOURCES, "filters": {"source_ids": ["src-beta"]}})
    assert "Alpha Report" not in fake.prompts[0]
    assert "Beta Notes" in fake.prompts[0]


# ═════════════════════════════════════════════════════════════════════════════
# Analysis
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_analyze_code_prompt(tools) -> None:
    dispatcher, fake = tools("Looks fine")
    reply = await _call(dispatcher, "gemini-analyze-code", {"code": "x = 1", "language": "python", "focus": "security"})
    assert reply.result["content"][0]["text"] == "Looks fine"
    prompt = fake.prompts[0]
    assert "Language: python" in prompt and "```\nx = 1\n```" in prompt
    assert prompt.endswith("Focus on security vulnerabilities and potential exploits.")

    bad = await _call(dispatcher, "gemini-analyze-code", {"code": "x", "focus": "style"})
    assert bad.error["code"] == -32602


@pytest.mark.asyncio
async def test_analyze_text_focus(tools) -> None:
    dispatcher, fake = tools()
    await _call(dispatcher, "gemini-analyze-text", {"text": "Hello there", "focus": "tone"})
    assert fake.prompts[0] == "Analyze the following text:\n\nFocus on: tone\n\nHello there"


@pytest.mark.asyncio
async def test_analyze_v2_code(tools) -> None:
    reply_text = (
        "Quality score: 8/10\n"
        "Issue: unused variable\n"
        "- Pattern: singleton\n"
        "Complexity: low\n"
        "- Suggestion: add tests"
    )
    dispatcher, fake = tools(reply_text)
    reply = await _call(dispatcher, "gemini-analyze-v2", {
        "content": "class A: pass",
        "analyzer_type": {"type": "code", "params": {"language": "python"}},
        "params": {"temperature": 0.1},
    })
    result = reply.result["structuredContent"]["result"]
    assert result == {
        "type": "code",
        "quality_score": 8.0,
        "issues": [{"severity": "medium", "category": "general", "description": "Issue: unused variable", "location": None}],
        "patterns": ["Pattern: singleton"],
        "complexity": "low",
        "suggestions": ["Suggestion: add tests"],
    }
    assert "Language: python" in fake.prompts[0]
    assert fake.calls[0].params == GenerationParams(temperature=0.1)


@pytest.mark.asyncio
async def test_analyze_v2_zero_score_is_kept(tools) -> None:
    dispatcher, _ = tools("Sentiment: negative\nConfidence score: 0\nanger and fear")
    reply = await _call(dispatcher, "gemini-analyze-v2", {"content": "awful", "analyzer_type": {"type": "sentiment"}})
    result = reply.result["structuredContent"]["result"]
    assert result["overall_sentiment"] == "negative"
    assert result["confidence"] == 0.0
    assert [e["name"] for e in result["emotions"]] == ["anger", "fear"]


@pytest.mark.asyncio
async def test_analyze_v2_defaults_when_nothing_parsed(tools) -> None:
    dispatcher, _ = tools("Nothing structured here")
    reply = await _call(dispatcher, "gemini-analyze-v2", {"content": "doc", "analyzer_type": {"type": "document"}})
    result = reply.result["structuredContent"]["result"]
    assert result == {"type": "document", "structure": "linear", "readability_score": 7.0, "sections": [], "key_points": []}


@pytest.mark.asyncio
async def test_analyze_v2_comparison_requires_target(tools) -> None:
    dispatcher, fake = tools("Verdict: nearly identical")
    missing = await _call(dispatcher, "gemini-analyze-v2", {"content": "a", "analyzer_type": {"type": "comparison"}})
    assert missing.error["code"] == -32602
    assert "analyzer_type.params.compare_with is required for comparison" in missing.error["message"]
    assert fake.call_count == 0

    ok = await _call(dispatcher, "gemini-analyze-v2", {
        "content": "a", "analyzer_type": {"type": "comparison", "params": {"compare_with": "b"}},
    })
    assert ok.result["structuredContent"]["result"]["verdict"] == "nearly identical"
    assert "Text B:\nb" in fake.prompts[0]


# ═════════════════════════════════════════════════════════════════════════════
# Summarization
# ═════════════════════════════════════════════════════════════════════════════


SUMMARY = "Caching keeps latency down. Caching also saves tokens."


@pytest.mark.asyncio
async def test_summarize_v2_defaults(tools) -> None:
    dispatcher, fake = tools(SUMMARY)
    reply = await _call(dispatcher, "gemini-summarize-v2", {"content": "long text", "focus": "costs"})
    result = reply.result["structuredContent"]["result"]
    assert result == {"summary": SUMMARY, "word_count": 8, "key_topics": ["caching"]}
    (upstream_call,) = fake.calls
    assert upstream_call.model == CATALOG.flash
    assert upstream_call.params == GenerationParams(temperature=0.4, max_output_tokens=1024)
    assert upstream_call.prompt.endswith("Focus specifically on: costs")


@pytest.mark.asyncio
async def test_summarize_v2_caller_params_win(tools) -> None:
    dispatcher, fake = tools(SUMMARY)
    await _call(dispatcher, "gemini-summarize-v2", {
        "content": "x", "length": "brief", "model": "pro", "params": {"max_tokens": 100, "top_k": 5},
    })
    assert fake.calls[0].model == CATALOG.pro
    assert fake.calls[0].params == GenerationParams(temperature=0.4, max_output_tokens=100, top_k=5)


@pytest.mark.asyncio
async def test_legacy_summarize_maps_vocabulary(tools) -> None:
    dispatcher, fake = tools(SUMMARY)
    reply = await _call(dispatcher, "gemini-summarize", {"content": "text", "detail_level": "detailed", "format": "bullets"})
    assert "structuredContent" not in reply.result
    assert orjson.loads(reply.result["content"][0]["text"])["result"]["summary"] == SUMMARY
    assert "Format the summary as bullet points." in fake.prompts[0]
    assert fake.calls[0].params.max_output_tokens == 2048


def test_legacy_summarize_content_limit() -> None:
    registry = build_default_registry()
    spec = registry.get("gemini-summarize")
    violations = registry.validate(spec, {"content": "x" * (MAX_CONTENT_CHARS + 1)}).unwrap_err()
    assert "content too large" in str(violations[0])


# ═════════════════════════════════════════════════════════════════════════════
# Brainstorming
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_brainstorm_single_round(tools) -> None:
    dispatcher, fake = tools("Try caching.")
    reply = await _call(dispatcher, "gemini-brainstorm", {"prompt": "speed", "claude_thoughts": "Profile first."})
    assert reply.result["content"][0]["text"] == (
        "# Synthesis\n\nTry caching.\n\n# Conversation History\n\n"
        "Round 1\nClaude: Profile first.\nGemini: Try caching."
    )
    assert fake.call_count == 1
    assert "Claude's thoughts: Profile first." in fake.prompts[0]


IDEAS = "1. Solar roofs for homes\n2. Community solar gardens\ncontinued line\n3. Wind farms"


@pytest.mark.asyncio
async def test_brainstorm_v2_ideas_and_themes(tools) -> None:
    dispatcher, fake = tools(IDEAS)
    reply = await _call(dispatcher, "gemini-brainstorm-v2", {"prompt": "energy", "num_ideas": 3, "constraints": "cheap"})
    result = reply.result["structuredContent"]["result"]
    assert [i["id"] for i in result["ideas"]] == [1, 2, 3]
    assert result["ideas"][1]["text"] == "Community solar gardens continued line"
    assert result["consensus_themes"][0] == {"theme": "solar", "frequency": 2, "related_ideas": [1, 2]}
    assert "Generate 3 creative" in fake.prompts[0] and "Constraints: cheap" in fake.prompts[0]
    assert fake.calls[0].params == GenerationParams(temperature=0.9, max_output_tokens=2048)


@pytest.mark.asyncio
async def test_brainstorm_v2_without_consensus(tools) -> None:
    dispatcher, _ = tools(IDEAS)
    reply = await _call(dispatcher, "gemini-brainstorm-v2", {"prompt": "energy", "extract_consensus": False})
    assert reply.result["structuredContent"]["result"]["consensus_themes"] is None


@pytest.mark.asyncio
async def test_spelled_out_defaults_share_one_upstream_call(tools) -> None:
    dispatcher, fake = tools(IDEAS)
    variants = [
        {"prompt": "x"},
        {"prompt": "x", "model": "pro"},
        {"prompt": "x", "params": {}},
        {"prompt": "x", "params": {"temperature": 0.9}},
    ]
    texts = [(await _call(dispatcher, "gemini-brainstorm-v2", args)).result["content"][0]["text"] for args in variants]
    assert fake.call_count == 1
    assert len(set(texts)) == 1


@pytest.mark.asyncio
async def test_different_requests_or_shaping_are_not_shared(tools) -> None:
    dispatcher, fake = tools(IDEAS)
    await _call(dispatcher, "gemini-brainstorm-v2", {"prompt": "x"})
    await _call(dispatcher, "gemini-brainstorm-v2", {"prompt": "x", "model": "flash"})
    await _call(dispatcher, "gemini-brainstorm-v2", {"prompt": "x", "params": {"temperature": 0.2}})
    reply = await _call(dispatcher, "gemini-brainstorm-v2", {"prompt": "x", "extract_consensus": False})
    assert fake.call_count == 4
    assert reply.result["structuredContent"]["result"]["consensus_themes"] is None


# ═════════════════════════════════════════════════════════════════════════════
# Parsing helpers
# ═════════════════════════════════════════════════════════════════════════════


def test_field_and_score_extraction() -> None:
    text = "Tone: formal\nOverall score 6.5 out of 10"
    assert parsing.extract_field(text, "tone") == "formal"
    assert parsing.extract_field(text, "verdict") is None
    assert parsing.extract_score(text) == 6.5
    assert parsing.extract_score("no numbers") is None


def test_list_extraction_requires_bullets() -> None:
    text = "- Theme: growth\n* theme: risk\nTheme: not a bullet\n• Theme: cost"
    assert parsing.extract_list(text, "theme") == ["Theme: growth", "theme: risk", "Theme: cost"]


def test_answer_falls_back_to_leading_lines() -> None:
    assert parsing.extract_answer("line one\nline two\nline three\nline four") == "line one line two line three"


def test_key_topics_skip_stop_words_and_singletons() -> None:
    text = "These models, these models! Tokens matter; tokens. Single mention."
    assert parsing.extract_key_topics(text) == ["models", "tokens"]
