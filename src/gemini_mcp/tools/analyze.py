"""Code and text analysis, plus the typed v2 analyzer."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from gemini_mcp.foundation.registry import ArgumentSchema, PendingCall, ToolSpec, array, obj, string
from gemini_mcp.upstream import GenerationResponse

from . import parsing
from .common import merge_params, model_field, params_field, preference, v2_shape

logger = logging.getLogger("gemini_mcp.tools")

ANALYZE_CODE = "gemini-analyze-code"
ANALYZE_TEXT = "gemini-analyze-text"
ANALYZE = "gemini-analyze-v2"

FOCUS_INSTRUCTIONS = {
    "quality": "Focus on code quality, readability, and best practices.",
    "security": "Focus on security vulnerabilities and potential exploits.",
    "performance": "Focus on performance optimizations and bottlenecks.",
    "bugs": "Focus on identifying bugs and logical errors.",
    "general": "Provide a general comprehensive analysis.",
}
ANALYZER_TYPES = ("text", "code", "document", "sentiment", "comparison")


def _language_line(language: str | None) -> str:
    return f"Language: {language}\n" if language else ""


# ─── Single-shot analyzers ────────────────────────────────────────────────

CODE_SCHEMA = ArgumentSchema({
    "code": string("The code to analyze", required=True, min_length=1),
    "language": string("Programming language"),
    "focus": string("Analysis focus", default="general", choices=tuple(FOCUS_INSTRUCTIONS)),
})

TEXT_SCHEMA = ArgumentSchema({
    "text": string("The text to analyze", required=True, min_length=1),
    "focus": string("What to focus on"),
})


def analyze_code(args: dict[str, Any]) -> PendingCall:
    logger.info(f"[{ANALYZE_CODE}] language={args.get('language')} focus={args['focus']} code_len={len(args['code'])}")
    prompt = (
        f"Analyze the following code:\n\n{_language_line(args.get('language'))}```\n{args['code']}\n```\n\n"
        f"{FOCUS_INSTRUCTIONS[args['focus']]}"
    )
    return PendingCall(prompt=prompt)


def analyze_text(args: dict[str, Any]) -> PendingCall:
    focus = f"\n\nFocus on: {f}" if (f := args.get("focus")) else ""
    return PendingCall(prompt=f"Analyze the following text:{focus}\n\n{args['text']}")


# ─── gemini-analyze-v2 ────────────────────────────────────────────────────

ANALYZE_SCHEMA = ArgumentSchema({
    "content": string("The content to analyze", required=True, min_length=1),
    "analyzer_type": obj({
        "type": string("Analyzer to run", required=True, choices=ANALYZER_TYPES),
        "params": obj(None, "Analyzer parameters (code: language, comparison: compare_with)"),
    }, "Type of analyzer to use", required=True),
    "options": obj({
        "focus_areas": array(string(), "Specific aspects to focus on"),
        "detail_level": string("Level of detail in analysis", default="standard",
                               choices=("brief", "standard", "comprehensive")),
    }, "Analyzer options"),
    "model": model_field(),
    "params": params_field(),
})


def comparison_needs_target(args: Mapping[str, Any]) -> bool | str:
    analyzer = args["analyzer_type"]
    if analyzer["type"] != "comparison":
        return True
    target = (analyzer.get("params") or {}).get("compare_with")
    return isinstance(target, str) or "analyzer_type.params.compare_with is required for comparison"


def _text_analysis(content: str, args: Mapping[str, Any]) -> tuple[str, Callable[[str], dict[str, Any]]]:
    areas = (args.get("options") or {}).get("focus_areas")
    focus = f"\nFocus on: {', '.join(areas)}" if areas else ""
    prompt = (
        "Analyze the following text and provide:\n"
        "1. Overall sentiment (positive, negative, neutral, mixed)\n"
        "2. Main themes (3-5 themes)\n"
        "3. Tone (formal, informal, technical, conversational, etc.)\n"
        f"4. Key points (3-5 bullet points){focus}\n\n"
        f"Text:\n{content}\n\n"
        "Provide analysis in a structured format."
    )
    return prompt, lambda text: {
        "sentiment": parsing.extract_field(text, "sentiment") or "neutral",
        "themes": parsing.extract_list(text, "theme"),
        "tone": parsing.extract_field(text, "tone") or "neutral",
        "key_points": parsing.extract_list(text, "key point"),
    }


def _code_analysis(content: str, language: str | None) -> tuple[str, Callable[[str], dict[str, Any]]]:
    prompt = (
        "Analyze this code and provide:\n"
        "1. Quality score (0-10)\n"
        "2. List of issues with severity (critical/high/medium/low) and category\n"
        "3. Design patterns used\n"
        "4. Complexity assessment\n"
        "5. Improvement suggestions\n\n"
        f"{_language_line(language)}```\n{content}\n```\n\n"
        "Be specific and actionable."
    )
    return prompt, lambda text: {
        "quality_score": _or_default(parsing.extract_score(text), 5.0),
        "issues": parsing.extract_issues(text),
        "patterns": parsing.extract_list(text, "pattern"),
        "complexity": parsing.extract_field(text, "complexity") or "moderate",
        "suggestions": parsing.extract_list(text, "suggestion"),
    }


def _document_analysis(content: str) -> tuple[str, Callable[[str], dict[str, Any]]]:
    prompt = (
        "Analyze this document's structure and readability:\n"
        "1. Overall structure (how it's organized)\n"
        "2. Readability score (0-10, where 10 is most readable)\n"
        "3. Main sections\n"
        "4. Key points\n\n"
        f"Document:\n{content}\n\n"
        "Provide structured analysis."
    )
    return prompt, lambda text: {
        "structure": parsing.extract_field(text, "structure") or "linear",
        "readability_score": _or_default(parsing.extract_score(text), 7.0),
        "sections": parsing.extract_list(text, "section"),
        "key_points": parsing.extract_list(text, "key point"),
    }


def _sentiment_analysis(content: str) -> tuple[str, Callable[[str], dict[str, Any]]]:
    prompt = (
        "Perform detailed sentiment analysis:\n"
        "1. Overall sentiment (very negative, negative, neutral, positive, very positive)\n"
        "2. Confidence level (0-1)\n"
        "3. Detected emotions with intensity (0-1): joy, sadness, anger, fear, surprise, etc.\n\n"
        f"Text:\n{content}\n\n"
        "Be precise and nuanced."
    )
    return prompt, lambda text: {
        "overall_sentiment": parsing.extract_field(text, "sentiment") or "neutral",
        "confidence": _or_default(parsing.extract_score(text), 0.5),
        "emotions": parsing.extract_emotions(text),
    }


def _comparison_analysis(content: str, compare_with: str) -> tuple[str, Callable[[str], dict[str, Any]]]:
    prompt = (
        "Compare these two texts:\n\n"
        f"Text A:\n{content}\n\n"
        f"Text B:\n{compare_with}\n\n"
        "Provide:\n"
        "1. Key similarities\n"
        "2. Key differences\n"
        "3. Overall verdict on how similar they are"
    )
    return prompt, lambda text: {
        "similarities": parsing.extract_list(text, "similar"),
        "differences": parsing.extract_list(text, "differ"),
        "verdict": parsing.extract_field(text, "verdict") or "moderately similar",
    }


def _or_default(value: float | None, default: float) -> float:
    return default if value is None else value


def analyze(args: dict[str, Any]) -> PendingCall:
    content = args["content"]
    kind = args["analyzer_type"]["type"]
    extra = args["analyzer_type"].get("params") or {}
    logger.info(f"[{ANALYZE}] type={kind} content_len={len(content)}")

    match kind:
        case "text":
            prompt, build = _text_analysis(content, args)
        case "code":
            prompt, build = _code_analysis(content, extra.get("language"))
        case "document":
            prompt, build = _document_analysis(content)
        case "sentiment":
            prompt, build = _sentiment_analysis(content)
        case "comparison":
            prompt, build = _comparison_analysis(content, extra["compare_with"])

    def result(response: GenerationResponse) -> dict[str, Any]:
        return {"type": kind, **build(response.text)}

    return PendingCall(
        prompt=prompt,
        model=preference(args),
        params=merge_params(args),
        shape=v2_shape(ANALYZE, result),
    )


def specs() -> list[ToolSpec]:
    return [
        ToolSpec(ANALYZE_CODE, "Analyze code", CODE_SCHEMA, analyze_code),
        ToolSpec(ANALYZE_TEXT, "Analyze text", TEXT_SCHEMA, analyze_text),
        ToolSpec(
            ANALYZE,
            "Unified analyzer with 5 types: text, code, document, sentiment, comparison",
            ANALYZE_SCHEMA,
            analyze,
            constraints=(comparison_needs_target,),
        ),
    ]
