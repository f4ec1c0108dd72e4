"""Standardized error handling for the tool server.

Provides error codes, the stable error kinds surfaced to MCP clients, and
structured error records. Uses Pydantic for validation and serialization.

Two axes:
- ErrorCode: fine-grained cause (RATE_LIMITED, API_KEY_INVALID, ...), drives retry decisions
- ErrorKind: stable machine-readable category written into every failure response
"""

from __future__ import annotations

import re
from enum import IntEnum, StrEnum
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated, NamedTuple, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    computed_field,
    field_validator,
)

if TYPE_CHECKING:
    from pydantic import ValidationError


class ErrorCode(StrEnum):
    """Fine-grained failure causes.

    Used for programmatic error handling and retry decisions.
    """
    API_KEY_MISSING = "API_KEY_MISSING"
    API_KEY_INVALID = "API_KEY_INVALID"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_PARAMS = "INVALID_PARAMS"
    PARSE_ERROR = "PARSE_ERROR"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


class ErrorKind(StrEnum):
    """Stable error categories reported to clients in ``error.data.kind``."""
    PROTOCOL_ERROR = "ProtocolError"
    METHOD_NOT_FOUND = "MethodNotFound"
    TOOL_NOT_FOUND = "ToolNotFound"
    INVALID_ARGUMENTS = "InvalidArguments"
    RETRYABLE_UPSTREAM = "RetryableUpstreamError"
    FATAL_UPSTREAM = "FatalUpstreamError"
    TIMEOUT = "Timeout"
    INTERNAL = "InternalError"


class RpcCode(IntEnum):
    """JSON-RPC 2.0 error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


# Transient causes: the retry executor re-attempts these
RETRYABLE_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.SERVER_ERROR,
})

_KIND_BY_CODE: dict[ErrorCode, ErrorKind] = {
    ErrorCode.RATE_LIMITED: ErrorKind.RETRYABLE_UPSTREAM,
    ErrorCode.NETWORK_ERROR: ErrorKind.RETRYABLE_UPSTREAM,
    ErrorCode.SERVER_ERROR: ErrorKind.RETRYABLE_UPSTREAM,
    ErrorCode.TIMEOUT: ErrorKind.TIMEOUT,
    ErrorCode.API_KEY_MISSING: ErrorKind.FATAL_UPSTREAM,
    ErrorCode.API_KEY_INVALID: ErrorKind.FATAL_UPSTREAM,
    ErrorCode.PERMISSION_DENIED: ErrorKind.FATAL_UPSTREAM,
    ErrorCode.INVALID_REQUEST: ErrorKind.FATAL_UPSTREAM,
    ErrorCode.NOT_FOUND: ErrorKind.FATAL_UPSTREAM,
    ErrorCode.PARSE_ERROR: ErrorKind.FATAL_UPSTREAM,
    ErrorCode.EMPTY_RESPONSE: ErrorKind.FATAL_UPSTREAM,
    ErrorCode.INVALID_PARAMS: ErrorKind.INVALID_ARGUMENTS,
    ErrorCode.CANCELLED: ErrorKind.INTERNAL,
    ErrorCode.UNKNOWN: ErrorKind.INTERNAL,
}

_RPC_BY_KIND: dict[ErrorKind, RpcCode] = {
    ErrorKind.PROTOCOL_ERROR: RpcCode.INVALID_REQUEST,
    ErrorKind.METHOD_NOT_FOUND: RpcCode.METHOD_NOT_FOUND,
    ErrorKind.TOOL_NOT_FOUND: RpcCode.METHOD_NOT_FOUND,
    ErrorKind.INVALID_ARGUMENTS: RpcCode.INVALID_PARAMS,
}


def kind_for_code(code: ErrorCode) -> ErrorKind:
    return _KIND_BY_CODE.get(code, ErrorKind.INTERNAL)


# Pattern -> code mapping, checked in insertion order. Each pattern must start
# on a word boundary ("rate" inside "generate" is not a rate limit).
_PATTERN_CODES: dict[str, ErrorCode] = {
    r"time(?:d )?out": ErrorCode.TIMEOUT,
    r"connection": ErrorCode.NETWORK_ERROR,
    r"network": ErrorCode.NETWORK_ERROR,
    r"rate[ _-]?limit|too many requests": ErrorCode.RATE_LIMITED,
    r"auth(?:entication|orization)?\b|unauthori[sz]ed": ErrorCode.API_KEY_INVALID,
    r"permission": ErrorCode.PERMISSION_DENIED,
    r"forbidden": ErrorCode.PERMISSION_DENIED,
    r"parse": ErrorCode.PARSE_ERROR,
    r"json": ErrorCode.PARSE_ERROR,
    r"decode": ErrorCode.PARSE_ERROR,
    r"validation": ErrorCode.INVALID_PARAMS,
    r"not ?found": ErrorCode.NOT_FOUND,
}
_PATTERNS = tuple((re.compile(rf"\b(?:{pattern})"), code) for pattern, code in _PATTERN_CODES.items())
_CAMEL_HUMP = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    haystack = exc_key.lower()
    for pattern, code in _PATTERNS:
        if pattern.search(haystack):
            return code
    return ErrorCode.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map an unexpected exception to an error code via its name/message.

    Type names are split on case humps first, so ``ReadTimeout`` reads as
    "read timeout".
    """
    if isinstance(exc, ToolException):
        return exc.error.code
    return _classify_cached(f"{_CAMEL_HUMP.sub(' ', type(exc).__name__)} {exc}")


class ToolError(BaseModel):
    """Structured failure record.

    Attributes:
        tool_name: Tool (or protocol method) that failed; empty for protocol-level errors
        message: Human-readable error message
        code: Machine-readable cause for programmatic handling
        kind: Stable category reported to clients (derived from ``code`` when omitted)
        attempts: Upstream attempts consumed before this error surfaced
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
        json_schema_extra={
            "title": "Tool Error",
            "examples": [{
                "tool_name": "gemini-query",
                "message": "Rate limit exceeded",
                "code": "RATE_LIMITED",
                "kind": "RetryableUpstreamError",
            }],
        },
    )

    tool_name: str = Field(default="", description="Tool that produced the error")
    message: Annotated[str, Field(min_length=1, description="Human-readable error message")]
    code: ErrorCode = Field(default=ErrorCode.UNKNOWN)
    kind: ErrorKind | None = Field(default=None)
    attempts: Annotated[int, Field(ge=0)] = 1

    @field_validator("message", mode="before")
    @classmethod
    def _ensure_message(cls, v: str | Exception) -> str:
        """Accept Exception objects and extract message."""
        if isinstance(v, Exception):
            return str(v) or type(v).__name__
        return v

    @field_validator("kind", mode="after")
    @classmethod
    def _derive_kind(cls, v: ErrorKind | None, info: ValidationInfo) -> ErrorKind:
        return v if v is not None else kind_for_code(info.data.get("code", ErrorCode.UNKNOWN))

    @computed_field
    @property
    def retryable(self) -> bool:
        """Whether the cause is transient (rate limits, timeouts, network, 5xx)."""
        return self.code in RETRYABLE_CODES

    @property
    def rpc_code(self) -> int:
        return int(_RPC_BY_KIND.get(self.kind, RpcCode.INTERNAL_ERROR))  # type: ignore[arg-type]

    @classmethod
    def create(
        cls,
        tool_name: str,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        *,
        kind: ErrorKind | None = None,
        attempts: int = 1,
    ) -> Self:
        return cls(tool_name=tool_name, message=message, code=code, kind=kind, attempts=attempts)

    @classmethod
    def from_exception(cls, tool_name: str, exc: BaseException, context: str = "") -> Self:
        """Create from exception with auto-classification."""
        return cls(
            tool_name=tool_name,
            message=f"{context}: {exc}" if context else (str(exc) or type(exc).__name__),
            code=classify_exception(exc),
        )

    def with_attempts(self, attempts: int) -> Self:
        return self.model_copy(update={"attempts": attempts})

    def to_rpc(self) -> dict[str, object]:
        """JSON-RPC ``error`` member for this failure."""
        return {
            "code": self.rpc_code,
            "message": self.message,
            "data": {"kind": str(self.kind), "code": str(self.code)},
        }

    def render(self) -> str:
        """One-line form for logs."""
        where = f" ({self.tool_name})" if self.tool_name else ""
        return f"{self.kind}{where} [{self.code}]: {self.message}"

    __str__ = render


class ToolException(Exception):
    """Exception wrapping a ToolError, raised from inside response shaping."""

    __slots__ = ("error",)

    def __init__(self, error: ToolError) -> None:
        self.error = error
        super().__init__(error.message)

    @classmethod
    def create(cls, tool_name: str, message: str, code: ErrorCode = ErrorCode.UNKNOWN) -> Self:
        return cls(ToolError(tool_name=tool_name, message=message, code=code))


class Violation(NamedTuple):
    """One field-level argument problem."""
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


def format_validation_error(exc: ValidationError) -> list[Violation]:
    """Flatten a pydantic ValidationError into ``field.path: message`` violations."""
    out: list[Violation] = []
    for err in exc.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
        msg = err.get("msg", "invalid value").removeprefix("Value error, ")
        out.append(Violation(loc, msg))
    return out
