"""Tool registry: registration, lookup and generic argument validation."""

from .registry import (
    Constraint,
    Handler,
    PendingCall,
    ToolOutput,
    ToolRegistry,
    ToolSpec,
    invalid_arguments,
    text_output,
)
from .schema import (
    MISSING,
    ArgumentSchema,
    FieldKind,
    FieldSpec,
    array,
    boolean,
    integer,
    number,
    obj,
    string,
)

__all__ = [
    # Registry
    "ToolRegistry", "ToolSpec", "PendingCall", "ToolOutput", "Handler", "Constraint",
    "invalid_arguments", "text_output",
    # Schema
    "ArgumentSchema", "FieldKind", "FieldSpec", "MISSING",
    "string", "integer", "number", "boolean", "array", "obj",
]
