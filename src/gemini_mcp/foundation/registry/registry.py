"""Central registry for tool discovery and argument validation.

The registry provides:
- Tool registration and lookup by name
- Generic schema validation/normalization for every tool
- Cross-field constraints run after the schema passes
- tools/list descriptors (name, description, JSON inputSchema)

The registry is an explicit object built once at startup and handed to the
dispatcher; after ``freeze()`` it is read-only.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from gemini_mcp.foundation.errors import Err, ErrorCode, ErrorKind, Ok, Result, ToolError, Violation
from gemini_mcp.foundation.registry.schema import ArgumentSchema
from gemini_mcp.upstream.models import ModelPreference
from gemini_mcp.upstream.types import GenerationParams, GenerationResponse

# Returns True/None when satisfied, or a message (False for a generic one)
Constraint = Callable[[Mapping[str, Any]], "bool | str | None"]


@dataclass(frozen=True, slots=True)
class ToolOutput:
    """Shaped tool result: display text plus optional structured content."""
    text: str
    structured: dict[str, Any] | None = None


def text_output(response: GenerationResponse) -> ToolOutput:
    return ToolOutput(response.text)


@dataclass(frozen=True, slots=True)
class PendingCall:
    """What a handler asks the core to run: one upstream generation plus shaping.

    Handlers never call the upstream themselves, so retries and caching are
    applied uniformly by the dispatcher.
    """
    prompt: str
    model: ModelPreference = ModelPreference.PRO
    params: GenerationParams = field(default_factory=GenerationParams)
    shape: Callable[[GenerationResponse], ToolOutput] = text_output


Handler = Callable[[dict[str, Any]], PendingCall]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Registered tool.

    Attributes:
        name: Unique registry key
        description: Shown to clients in tools/list
        schema: Declarative argument schema
        handler: Pure transform from normalized arguments to a PendingCall
        cacheable: Results may be served from the result cache
        constraints: Cross-field checks on normalized arguments
    """
    name: str
    description: str
    schema: ArgumentSchema
    handler: Handler
    cacheable: bool = True
    constraints: Sequence[Constraint] = ()

    def descriptor(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.schema.to_json_schema()}


class ToolRegistry:
    """Central registry for all available tools.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register(spec)
        >>> registry.freeze()
        >>> tool = registry.resolve("gemini-query").unwrap()
        >>> args = registry.validate(tool, {"prompt": "hi"}).unwrap()
    """

    __slots__ = ("_tools", "_strict", "_frozen")

    def __init__(self, *, strict: bool = False) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._strict = strict
        self._frozen = False

    @property
    def strict(self) -> bool:
        """Unknown argument fields are violations instead of being dropped."""
        return self._strict

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, spec: ToolSpec) -> None:
        """Register a tool. Duplicate names and late registration are programmer errors."""
        if self._frozen:
            raise ValueError(f"Registry is frozen; cannot register '{spec.name}'.")
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' already registered.")
        if not spec.description:
            raise ValueError(f"Tool '{spec.name}' needs a description.")
        self._tools[spec.name] = spec

    def freeze(self) -> ToolRegistry:
        """Compile every schema and make the registry read-only."""
        for spec in self._tools.values():
            spec.schema.model(strict=self._strict)
        self._frozen = True
        return self

    def resolve(self, name: str) -> Result[ToolSpec, ToolError]:
        if (spec := self._tools.get(name)) is None:
            return Err(ToolError.create(name, f"Unknown tool: {name}", ErrorCode.NOT_FOUND, kind=ErrorKind.TOOL_NOT_FOUND))
        return Ok(spec)

    def validate(self, spec: ToolSpec, arguments: Mapping[str, Any]) -> Result[dict[str, Any], list[Violation]]:
        """Validate and normalize arguments, then run cross-field constraints."""
        result = spec.schema.validate(arguments, strict=self._strict)
        if result.is_err():
            return result
        normalized = result.unwrap()
        violations = [v for c in spec.constraints if (v := _check(c, normalized)) is not None]
        return Err(violations) if violations else Ok(normalized)

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def list_tools(self) -> list[dict[str, Any]]:
        """tools/list descriptors in registration order."""
        return [spec.descriptor() for spec in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())


def _check(constraint: Constraint, args: Mapping[str, Any]) -> Violation | None:
    match constraint(args):
        case True | None:
            return None
        case str() as message:
            return Violation("arguments", message)
        case _:
            return Violation("arguments", f"constraint {getattr(constraint, '__name__', 'check')} failed")


def invalid_arguments(tool_name: str, violations: Sequence[Violation]) -> ToolError:
    """InvalidArguments error listing every violation."""
    detail = "; ".join(str(v) for v in violations)
    return ToolError.create(tool_name, f"Invalid arguments: {detail}", ErrorCode.INVALID_PARAMS, kind=ErrorKind.INVALID_ARGUMENTS)
