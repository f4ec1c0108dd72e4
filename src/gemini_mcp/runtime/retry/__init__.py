"""Retry executor with bounded exponential backoff and jitter."""

from .backoff import Backoff, ExponentialBackoff
from .policy import NO_RETRY, RetryExecutor, RetryPolicy, RetryState

__all__ = ["Backoff", "ExponentialBackoff", "NO_RETRY", "RetryExecutor", "RetryPolicy", "RetryState"]
