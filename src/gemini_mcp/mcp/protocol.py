"""JSON-RPC 2.0 message framing for the MCP stdio transport.

One JSON object per line. ``parse_line`` turns raw bytes into a Request (or
a notification) or a ready-to-send error Response; it never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import orjson

from gemini_mcp import __version__
from gemini_mcp.foundation.errors import Err, ErrorCode, ErrorKind, Ok, Result, RpcCode, ToolError

PROTOCOL_VERSION = "2024-11-05"
SERVER_INFO = {"name": "gemini-mcp", "version": __version__}

RequestId = str | int


@dataclass(frozen=True, slots=True)
class Request:
    """One inbound message. ``id`` is None for notifications."""
    method: str
    params: Any = field(default_factory=dict)
    id: RequestId | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


@dataclass(frozen=True, slots=True)
class Response:
    """Exactly one of ``result`` or ``error`` is set."""
    id: RequestId | None
    result: Any = None
    error: dict[str, Any] | None = None

    @classmethod
    def success(cls, id: RequestId | None, result: Any) -> Response:  # noqa: A002
        return cls(id, result=result)

    @classmethod
    def failure(cls, id: RequestId | None, error: ToolError, *, code: int | None = None) -> Response:  # noqa: A002
        payload = error.to_rpc()
        if code is not None:
            payload["code"] = int(code)
        return cls(id, error=payload)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            out["error"] = self.error
        else:
            out["result"] = self.result
        return out

    def encode(self) -> bytes:
        """Serialized line including the trailing newline."""
        return orjson.dumps(self.to_dict(), option=orjson.OPT_APPEND_NEWLINE | orjson.OPT_NON_STR_KEYS)


def protocol_error(message: str) -> ToolError:
    return ToolError.create("", message, ErrorCode.INVALID_REQUEST, kind=ErrorKind.PROTOCOL_ERROR)


def _valid_id(value: Any) -> bool:
    # bool is an int subclass but not a valid id
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def parse_line(line: bytes | str) -> Result[Request, Response]:
    """Decode one line into a Request, or the error Response to send back."""
    try:
        message = orjson.loads(line)
    except orjson.JSONDecodeError:
        return Err(Response.failure(None, protocol_error("Parse error"), code=RpcCode.PARSE_ERROR))

    if not isinstance(message, dict):
        return Err(Response.failure(None, protocol_error("Invalid Request: expected a JSON object")))

    has_id = "id" in message
    msg_id = message.get("id")
    if has_id and not _valid_id(msg_id):
        return Err(Response.failure(None, protocol_error("Invalid Request: id must be a string or integer")))

    if message.get("jsonrpc") != "2.0":
        return Err(Response.failure(msg_id, protocol_error('Invalid Request: jsonrpc must be "2.0"')))
    method = message.get("method")
    if not isinstance(method, str) or not method:
        return Err(Response.failure(msg_id, protocol_error("Invalid Request: method must be a string")))

    params = message.get("params")
    return Ok(Request(method=method, params={} if params is None else params, id=msg_id if has_id else None))
