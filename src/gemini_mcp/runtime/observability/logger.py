"""Logging setup with request-scoped context.

Modules log through named stdlib loggers (``gemini_mcp.server``,
``gemini_mcp.retry``, ...). ``configure_logging`` installs a single stderr
handler with either a human-readable console formatter or a JSON-lines
formatter. stdout belongs to the protocol and is never written here.

Fields bound with ``log_context`` (request id, tool name) are attached to
every record emitted inside the scope, including from concurrent tasks,
since each asyncio task copies the context at creation.

Quick Start:
    >>> configure_logging(format="console", level="DEBUG")
    >>> log = logging.getLogger("gemini_mcp.server")
    >>> with log_context(request_id=7, tool="gemini-query"):
    ...     log.info("dispatching")
    # => 10:30:45.123 [info] dispatching request_id=7 tool=gemini-query
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, TextIO

import orjson

_ROOT = "gemini_mcp"

# Context var for bound fields (persists across awaits, copied into tasks)
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# Attributes every LogRecord carries; anything else came from ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "context"}

_COLORS = {"reset": "\033[0m", "dim": "\033[2m", "bold": "\033[1m", "red": "\033[31m", "cyan": "\033[36m"}
_NO_COLORS = dict.fromkeys(_COLORS, "")
_LEVEL_COLORS = {
    "debug": "\033[34m", "info": "\033[32m", "warning": "\033[33m", "error": "\033[31m", "critical": "\033[1;31m",
}


class log_context:  # noqa: N801 - used like a function
    """Context manager binding fields onto every record in scope.

    Example:
        >>> with log_context(request_id="abc123"):
        ...     log.info("processing")  # includes request_id
        >>> log.info("done")  # no request_id
    """

    __slots__ = ("_ctx", "_token")

    def __init__(self, **ctx: Any) -> None:
        self._ctx, self._token = ctx, None

    def __enter__(self) -> None:
        self._token = _log_context.set({**_log_context.get(), **self._ctx})

    def __exit__(self, *_: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)


def current_context() -> dict[str, Any]:
    return dict(_log_context.get())


class ContextFilter(logging.Filter):
    """Attach bound context plus ``extra=`` fields as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        record.context = {**_log_context.get(), **extra}
        return True


def _format_value(v: Any) -> str:
    if isinstance(v, str):
        return repr(v) if " " in v or not v else v
    return str(v)


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "context", None) or {}


class ConsoleFormatter(logging.Formatter):
    """Human-readable output. Format: HH:MM:SS.mmm [level] message key=value ..."""

    def __init__(self, *, colors: bool = False) -> None:
        super().__init__()
        self.colors = colors

    def format(self, record: logging.LogRecord) -> str:
        c = _COLORS if self.colors else _NO_COLORS
        level = record.levelname.lower()
        ts = datetime.fromtimestamp(record.created, tz=UTC).strftime("%H:%M:%S.%f")[:-3]
        parts = [f"{c['dim']}{ts}{c['reset']}",
                 f"{_LEVEL_COLORS.get(level, '') if self.colors else ''}[{level}]{c['reset']}",
                 f"{c['bold']}{record.getMessage()}{c['reset']}"]
        parts += [f"{c['cyan']}{k}{c['reset']}={_format_value(v)}" for k, v in sorted(_context_of(record).items())]
        line = " ".join(parts)
        if record.exc_info:
            line += f"\n{c['red']}{self.formatException(record.exc_info)}{c['reset']}"
        return line


class JsonFormatter(logging.Formatter):
    """JSON Lines output for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
            **_context_of(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, option=orjson.OPT_NON_STR_KEYS, default=str).decode()


def configure_logging(
    format: str = "console",  # noqa: A002 - shadows builtin but matches stdlib
    level: str = "INFO",
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> logging.Handler:
    """Install the package's stderr handler. Format: "console" (human) or "json" (machine)."""
    stream = output or sys.stderr
    match format:
        case "console":
            formatter: logging.Formatter = ConsoleFormatter(
                colors=getattr(stream, "isatty", lambda: False)() if colors is None else colors
            )
        case "json":
            formatter = JsonFormatter()
        case _:
            raise ValueError(f"Unknown format: {format}. Use 'console' or 'json'")

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    root = logging.getLogger(_ROOT)
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False
    return handler
