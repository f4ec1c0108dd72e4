"""Logging configuration and request-scoped log context."""

from .logger import ConsoleFormatter, ContextFilter, JsonFormatter, configure_logging, current_context, log_context

__all__ = ["ConsoleFormatter", "ContextFilter", "JsonFormatter", "configure_logging", "current_context", "log_context"]
