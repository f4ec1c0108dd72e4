"""Gemini tools and the default registry.

Each tool module exposes ``specs()``; handlers are pure transforms from
validated arguments to a ``PendingCall``.

Example:
    >>> registry = build_default_registry()
    >>> [t["name"] for t in registry.list_tools()][:2]
    ['gemini-query', 'gemini-analyze-code']
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from gemini_mcp.foundation.registry import ToolRegistry

from . import analyze, brainstorm, query, summarize

if TYPE_CHECKING:
    from gemini_mcp.foundation.config import GeminiMcpSettings

# tools/list order
_LEGACY = ("gemini-query", "gemini-analyze-code", "gemini-analyze-text", "gemini-summarize", "gemini-brainstorm")
_V2 = ("gemini-search-v2", "gemini-analyze-v2", "gemini-summarize-v2", "gemini-brainstorm-v2")
TOOL_NAMES = _LEGACY + _V2


def build_default_registry(settings: GeminiMcpSettings | None = None, *, strict: bool | None = None) -> ToolRegistry:
    """Register all Gemini tools and freeze the registry.

    ``strict`` overrides ``settings.server.strict_arguments``.
    """
    if strict is None:
        strict = settings.server.strict_arguments if settings is not None else False
    by_name = {s.name: s for module in (query, analyze, summarize, brainstorm) for s in module.specs()}
    registry = ToolRegistry(strict=strict)
    for name in TOOL_NAMES:
        registry.register(by_name[name])
    return registry.freeze()


__all__ = ["TOOL_NAMES", "build_default_registry"]
