"""Declarative argument schemas for tools.

A schema is a mapping of field name to ``FieldSpec``, a tagged variant whose
``kind`` selects the value type. Schemas are validated generically: each one
is compiled once into a pydantic model, so every tool gets the same checks
(required fields, strict typing, choices, ranges) without ad hoc code.

Normalization rules applied during validation:
- defaults are filled in, absent optional fields are omitted
- strings are whitespace-trimmed
- integers given for NUMBER fields become floats
- nested objects are normalized recursively

Example:
    >>> schema = ArgumentSchema({
    ...     "prompt": string("The prompt", required=True, min_length=1),
    ...     "model": string("Model", default="pro", choices=("pro", "flash")),
    ... })
    >>> schema.validate({"prompt": "  hi "}).unwrap()
    {'prompt': 'hi', 'model': 'pro'}
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    Strict,
    StringConstraints,
    ValidationError,
    create_model,
)

from gemini_mcp.foundation.errors import Err, Ok, Result, Violation, format_validation_error


class FieldKind(StrEnum):
    """Value type of a schema field (JSON Schema type names)."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Descriptor for one argument field.

    Attributes:
        kind: Value type
        description: Shown to clients in tools/list
        required: Absent value is a violation
        default: Filled in when absent (MISSING means omit)
        choices: Allowed values (enum)
        minimum/maximum: Inclusive numeric bounds
        min_length: Minimum string length or array size
        items: Element spec for ARRAY fields
        fields: Member specs for OBJECT fields (None accepts any mapping)
    """
    kind: FieldKind
    description: str = ""
    required: bool = False
    default: Any = MISSING
    choices: tuple[Any, ...] | None = None
    minimum: float | None = None
    maximum: float | None = None
    min_length: int | None = None
    items: FieldSpec | None = None
    fields: Mapping[str, FieldSpec] | None = None

    def __post_init__(self) -> None:
        if self.required and self.default is not MISSING:
            raise ValueError("a required field cannot declare a default")
        if self.kind is FieldKind.ARRAY and self.items is None:
            raise ValueError("ARRAY fields need an items spec")

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING

    def to_json_schema(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": str(self.kind)}
        if self.description:
            out["description"] = self.description
        if self.choices is not None:
            out["enum"] = list(self.choices)
        if self.minimum is not None:
            out["minimum"] = self.minimum
        if self.maximum is not None:
            out["maximum"] = self.maximum
        if self.min_length is not None:
            out["minItems" if self.kind is FieldKind.ARRAY else "minLength"] = self.min_length
        if self.has_default:
            out["default"] = self.default
        if self.items is not None:
            out["items"] = self.items.to_json_schema()
        if self.fields is not None:
            out |= _object_schema(self.fields)
        return out


# ─── Constructors ─────────────────────────────────────────────────────────

def string(description: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldKind.STRING, description, **kw)


def integer(description: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldKind.INTEGER, description, **kw)


def number(description: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldKind.NUMBER, description, **kw)


def boolean(description: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldKind.BOOLEAN, description, **kw)


def array(items: FieldSpec, description: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldKind.ARRAY, description, items=items, **kw)


def obj(fields: Mapping[str, FieldSpec] | None = None, description: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldKind.OBJECT, description, fields=fields, **kw)


# ─── Compilation ──────────────────────────────────────────────────────────

def _one_of(choices: tuple[Any, ...]):
    allowed = ", ".join(repr(c) for c in choices)

    def check(v: Any) -> Any:
        if v not in choices:
            raise ValueError(f"must be one of {allowed}")
        return v
    return check


def _annotation(spec: FieldSpec, *, strict: bool, name: str) -> Any:
    bounds = {k: v for k, v in (("ge", spec.minimum), ("le", spec.maximum)) if v is not None}
    match spec.kind:
        case FieldKind.STRING:
            tp: Any = Annotated[str, StringConstraints(strip_whitespace=True, strict=True, min_length=spec.min_length)]
        case FieldKind.INTEGER:
            tp = Annotated[int, Strict(), Field(**bounds)]
        case FieldKind.NUMBER:
            tp = Annotated[float, Strict(), Field(**bounds), AfterValidator(float)]
        case FieldKind.BOOLEAN:
            tp = Annotated[bool, Strict()]
        case FieldKind.ARRAY:
            item = _annotation(spec.items, strict=strict, name=f"{name}_item")  # type: ignore[arg-type]
            tp = Annotated[list[item], Strict(), Field(min_length=spec.min_length)]
        case FieldKind.OBJECT:
            tp = _compile(spec.fields, strict=strict, name=name) if spec.fields is not None else dict[str, Any]
    if spec.choices is not None:
        tp = Annotated[tp, AfterValidator(_one_of(spec.choices))]
    return tp


def _compile(fields: Mapping[str, FieldSpec], *, strict: bool, name: str) -> type[BaseModel]:
    definitions: dict[str, Any] = {}
    for fname, spec in fields.items():
        tp = _annotation(spec, strict=strict, name=f"{name}_{fname}")
        if spec.required:
            definitions[fname] = (tp, ...)
        elif spec.has_default:
            definitions[fname] = (tp, spec.default)
        else:
            definitions[fname] = (Optional[tp], None)
    config = ConfigDict(extra="forbid" if strict else "ignore", protected_namespaces=())
    return create_model(name, __config__=config, **definitions)


def _dump(model: BaseModel, fields: Mapping[str, FieldSpec]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for fname, spec in fields.items():
        value = getattr(model, fname)
        if value is None and not spec.has_default:
            continue
        out[fname] = _dump_value(value, spec)
    return out


def _dump_value(value: Any, spec: FieldSpec) -> Any:
    if isinstance(value, BaseModel) and spec.fields is not None:
        return _dump(value, spec.fields)
    if isinstance(value, list) and spec.items is not None:
        return [_dump_value(v, spec.items) for v in value]
    return value


def _object_schema(fields: Mapping[str, FieldSpec]) -> dict[str, Any]:
    out: dict[str, Any] = {"properties": {k: v.to_json_schema() for k, v in fields.items()}}
    if required := [k for k, v in fields.items() if v.required]:
        out["required"] = required
    return out


class ArgumentSchema:
    """Ordered set of named FieldSpecs, validated through a compiled pydantic model."""

    __slots__ = ("_fields", "_models")

    def __init__(self, fields: Mapping[str, FieldSpec] | None = None) -> None:
        self._fields: dict[str, FieldSpec] = dict(fields or {})
        self._models: dict[bool, type[BaseModel]] = {}

    @property
    def fields(self) -> Mapping[str, FieldSpec]:
        return self._fields

    def model(self, *, strict: bool = False) -> type[BaseModel]:
        """Compiled pydantic model (built once per strictness)."""
        if (m := self._models.get(strict)) is None:
            m = self._models[strict] = _compile(self._fields, strict=strict, name="Arguments")
        return m

    def validate(self, arguments: Mapping[str, Any], *, strict: bool = False) -> Result[dict[str, Any], list[Violation]]:
        """Validate and normalize raw arguments."""
        try:
            parsed = self.model(strict=strict).model_validate(dict(arguments))
        except ValidationError as e:
            return Err(format_validation_error(e))
        return Ok(_dump(parsed, self._fields))

    def to_json_schema(self) -> dict[str, Any]:
        """JSON Schema ``inputSchema`` for tools/list."""
        return {"type": "object", **_object_schema(self._fields)}

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def __len__(self) -> int:
        return len(self._fields)
