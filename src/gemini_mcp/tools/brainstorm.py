"""Brainstorming: one collaborative round, and numbered idea generation."""

from __future__ import annotations

import logging
from typing import Any

from gemini_mcp.foundation.registry import ArgumentSchema, PendingCall, ToolOutput, ToolSpec, boolean, integer, string
from gemini_mcp.upstream import GenerationResponse

from . import parsing
from .common import merge_params, model_field, params_field, preference, v2_shape

logger = logging.getLogger("gemini_mcp.tools")

BRAINSTORM = "gemini-brainstorm"
BRAINSTORM_V2 = "gemini-brainstorm-v2"

BRAINSTORM_SCHEMA = ArgumentSchema({
    "prompt": string("Topic to brainstorm about", required=True, min_length=1),
    "claude_thoughts": string("The caller's thoughts to build on", required=True),
    "max_rounds": integer("Upper bound on collaboration rounds", default=3, minimum=1),
})

BRAINSTORM_V2_SCHEMA = ArgumentSchema({
    "prompt": string("The topic or problem to brainstorm", required=True, min_length=1),
    "num_ideas": integer("Number of ideas to generate (1-50)", default=10, minimum=1, maximum=50),
    "constraints": string("Optional constraints or context for brainstorming"),
    "extract_consensus": boolean("Extract consensus themes from generated ideas", default=True),
    "model": model_field(),
    "params": params_field(),
})


def brainstorm(args: dict[str, Any]) -> PendingCall:
    """Single round: the reply is both the synthesis and the only history entry."""
    thoughts = args["claude_thoughts"]

    def shape(response: GenerationResponse) -> ToolOutput:
        history = f"Round 1\nClaude: {thoughts}\nGemini: {response.text}"
        return ToolOutput(f"# Synthesis\n\n{response.text}\n\n# Conversation History\n\n{history}")

    return PendingCall(
        prompt=f"Collaborative brainstorm on: {args['prompt']}\n\nClaude's thoughts: {thoughts}\n\nRespond with your insights.",
        shape=shape,
    )


def brainstorm_v2(args: dict[str, Any]) -> PendingCall:
    logger.debug(f"[{BRAINSTORM_V2}] num_ideas={args['num_ideas']} extract_consensus={args['extract_consensus']}")
    prompt = f"Generate {args['num_ideas']} creative, diverse ideas for the following topic:\n\n{args['prompt']}\n\n"
    if constraints := args.get("constraints"):
        prompt += f"Constraints: {constraints}\n\n"
    prompt += (
        "List each idea on a new line, numbered (1., 2., 3., etc.).\n"
        "Make ideas specific, actionable, and varied in approach."
    )
    extract = args["extract_consensus"]

    def build(response: GenerationResponse) -> dict[str, Any]:
        ideas = parsing.parse_ideas(response.text)
        logger.info(f"[{BRAINSTORM_V2}] parsed {len(ideas)} ideas")
        return {"ideas": ideas, "consensus_themes": parsing.extract_consensus_themes(ideas) if extract else None}

    return PendingCall(
        prompt=prompt,
        model=preference(args),
        params=merge_params(args, temperature=0.9, max_tokens=2048),
        shape=v2_shape(BRAINSTORM_V2, build),
    )


def specs() -> list[ToolSpec]:
    return [
        ToolSpec(BRAINSTORM, "Collaborative brainstorming", BRAINSTORM_SCHEMA, brainstorm),
        ToolSpec(BRAINSTORM_V2, "Idea generation with consensus theme extraction", BRAINSTORM_V2_SCHEMA, brainstorm_v2),
    ]
