"""Direct queries and multi-source search."""

from __future__ import annotations

import logging
from typing import Any

from gemini_mcp.foundation.errors import ErrorCode, ToolException
from gemini_mcp.foundation.registry import (
    ArgumentSchema,
    PendingCall,
    ToolSpec,
    array,
    boolean,
    integer,
    number,
    obj,
    string,
)
from gemini_mcp.upstream import GenerationParams, GenerationResponse

from . import parsing
from .common import merge_params, model_field, params_field, preference, require_text, v2_shape

logger = logging.getLogger("gemini_mcp.tools")

QUERY = "gemini-query"
SEARCH = "gemini-search-v2"


# ─── gemini-query ─────────────────────────────────────────────────────────

QUERY_SCHEMA = ArgumentSchema({
    "prompt": string("The prompt to send", required=True, min_length=1),
    "model": model_field(default="pro"),
    "temperature": number("Temperature for generation (0.0-2.0)", minimum=0.0, maximum=2.0),
    "max_output_tokens": integer("Maximum tokens in response", minimum=1),
})


def query(args: dict[str, Any]) -> PendingCall:
    logger.debug(f"[{QUERY}] model={args['model']} prompt_len={len(args['prompt'])}")
    return PendingCall(
        prompt=args["prompt"],
        model=preference(args),
        params=GenerationParams(temperature=args.get("temperature"), max_output_tokens=args.get("max_output_tokens")),
        shape=require_text(QUERY),
    )


# ─── gemini-search-v2 ─────────────────────────────────────────────────────

SEARCH_SCHEMA = ArgumentSchema({
    "query": string("The search query", required=True, min_length=1),
    "sources": array(obj({
        "id": string("Unique identifier for this source", required=True),
        "title": string("Title of the source", required=True),
        "content": string("Content to search", required=True),
    }), "Sources to search across", required=True, min_length=1),
    "filters": obj({
        "source_ids": array(string(), "Limit search to specific source IDs"),
        "min_relevance": number("Minimum relevance score (0-1)", minimum=0.0, maximum=1.0),
        "max_results": integer("Maximum number of results", minimum=0),
    }, "Search filters"),
    "ranking": string("Ranking criteria", default="relevance", choices=("relevance", "recency", "popularity")),
    "include_citations": boolean("Include citations in results", default=True),
    "model": model_field(),
    "params": params_field(),
})


def _search_prompt(query_text: str, sources: list[dict[str, Any]]) -> str:
    parts = [
        "You are performing a semantic search across multiple sources.\n\n"
        f"Query: {query_text}\n\n"
        "Sources:\n\n"
    ]
    parts += [f"--- Source: {s['title']} (ID: {s['id']}) ---\n{s['content']}\n\n" for s in sources]
    parts.append(
        "Based on the query, provide:\n"
        "1. A direct answer to the query\n"
        "2. For each relevant source, provide:\n"
        "   - Source ID and title\n"
        "   - A brief excerpt showing relevance\n"
        "   - Relevance score (0.0-1.0)\n"
        "3. If applicable, include direct quotes as citations\n\n"
        "Format your response clearly with sections for Answer, Results, and Citations."
    )
    return "".join(parts)


def search(args: dict[str, Any]) -> PendingCall:
    filters = args.get("filters") or {}
    sources = args["sources"]
    if (ids := filters.get("source_ids")) is not None:
        sources = [s for s in sources if s["id"] in ids]
    if not sources:
        raise ToolException.create(SEARCH, "No sources match the filter criteria", ErrorCode.INVALID_PARAMS)

    logger.info(f"[{SEARCH}] sources={len(sources)} include_citations={args['include_citations']}")
    min_relevance = filters.get("min_relevance")
    max_results = filters.get("max_results")

    def build(response: GenerationResponse) -> dict[str, Any]:
        results = parsing.extract_results(response.text, sources)
        if min_relevance is not None:
            results = [r for r in results if r["relevance_score"] >= min_relevance]
        # recency/popularity carry no source metadata to rank by; relevance order is kept
        results.sort(key=lambda r: r["relevance_score"], reverse=True)
        if max_results is not None:
            results = results[:max_results]
        return {
            "answer": parsing.extract_answer(response.text),
            "results": results,
            "citations": parsing.extract_citations(response.text, sources) if args["include_citations"] else [],
        }

    return PendingCall(
        prompt=_search_prompt(args["query"], sources),
        model=preference(args),
        params=merge_params(args, temperature=0.3, max_tokens=2048),
        shape=v2_shape(SEARCH, build),
    )


def specs() -> list[ToolSpec]:
    return [
        ToolSpec(QUERY, "Send direct queries to Gemini models", QUERY_SCHEMA, query),
        ToolSpec(SEARCH, "Multi-source semantic search with citations and ranking", SEARCH_SCHEMA, search),
    ]
