"""Command-line entry point: ``gemini-mcp`` serves the Gemini tools over stdio."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from gemini_mcp import __version__
from gemini_mcp.foundation.config import GeminiMcpSettings, get_settings
from gemini_mcp.mcp import Dispatcher, StdinSource, StdoutSink
from gemini_mcp.runtime.observability import configure_logging
from gemini_mcp.tools import build_default_registry
from gemini_mcp.upstream import GeminiClient

logger = logging.getLogger("gemini_mcp.server")

EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gemini-mcp",
        description="MCP server exposing Google Gemini models as tools over stdio.",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Log warnings and errors only")
    parser.add_argument("--log-format", choices=("console", "json"), help="Log output format (stderr)")
    parser.add_argument("--no-verify", action="store_true", help="Skip the API key check at startup")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _log_level(args: argparse.Namespace, settings: GeminiMcpSettings) -> str:
    if args.verbose:
        return "DEBUG"
    if args.quiet:
        return "WARNING"
    return settings.logging.level


async def run(settings: GeminiMcpSettings, *, verify: bool) -> int:
    """Build the server from settings and serve stdin until EOF."""
    client = GeminiClient.from_settings(settings.upstream)
    if verify:
        check = await client.ping()
        if check.is_err():
            error = check.unwrap_err()
            logger.error(f"Gemini API check failed: {error.render()}")
            await client.aclose()
            return 1

    dispatcher = Dispatcher.from_settings(settings, build_default_registry(settings), client)
    await dispatcher.serve(
        StdinSource(max_line_bytes=settings.server.max_line_bytes),
        StdoutSink(),
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"gemini-mcp: invalid configuration:\n{e}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(format=args.log_format or settings.logging.format, level=_log_level(args, settings))
    if not settings.upstream.has_api_key:
        print("gemini-mcp: GEMINI_API_KEY is not set (environment or .env)", file=sys.stderr)
        return EXIT_CONFIG

    logger.info(f"Starting gemini-mcp {__version__}")
    verify = settings.upstream.verify_on_start and not args.no_verify
    try:
        return asyncio.run(run(settings, verify=verify))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
