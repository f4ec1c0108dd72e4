"""MCP stdio server: JSON-RPC framing and the request dispatcher."""

from .protocol import PROTOCOL_VERSION, SERVER_INFO, Request, Response, parse_line
from .server import Dispatcher, LineSink, LineSource, StdinSource, StdoutSink, Upstream

__all__ = [
    "PROTOCOL_VERSION", "SERVER_INFO", "Request", "Response", "parse_line",
    "Dispatcher", "Upstream", "LineSource", "LineSink", "StdinSource", "StdoutSink",
]
