"""gemini-mcp - Google Gemini models as MCP tools over stdio.

A line-delimited JSON-RPC 2.0 server that forwards tool calls to the Gemini
``generateContent`` API with argument validation, retry with backoff, and a
request-level result cache that folds concurrent identical calls into one.

Quick Start:
    $ export GEMINI_API_KEY=...
    $ gemini-mcp --log-format json

Programmatic:
    >>> from gemini_mcp.tools import build_default_registry
    >>> from gemini_mcp.mcp import Dispatcher, StdinSource, StdoutSink
    >>> from gemini_mcp.upstream import GeminiClient
    >>>
    >>> dispatcher = Dispatcher(build_default_registry(), GeminiClient(api_key))
    >>> await dispatcher.serve(StdinSource(), StdoutSink())
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
