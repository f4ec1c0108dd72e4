"""Unified error handling for gemini-mcp.

- ErrorCode/ErrorKind: fine-grained causes and the stable categories clients see
- ToolError/ToolException: Structured errors and exceptions
- Result/Ok/Err: Monadic error handling for cross-component returns
"""

from .errors import (
    RETRYABLE_CODES,
    ErrorCode,
    ErrorKind,
    RpcCode,
    ToolError,
    ToolException,
    Violation,
    classify_exception,
    format_validation_error,
    kind_for_code,
)
from .result import Err, Ok, Result

__all__ = [
    # Core errors
    "ErrorCode", "ErrorKind", "RpcCode", "RETRYABLE_CODES", "ToolError", "ToolException", "Violation",
    "classify_exception", "kind_for_code", "format_validation_error",
    # Result monad
    "Result", "Ok", "Err",
]
