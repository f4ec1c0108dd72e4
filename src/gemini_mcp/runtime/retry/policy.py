"""Retry policy and executor for upstream calls.

Operations return ``Result[T, ToolError]``; classification is the error's
``retryable`` flag (RATE_LIMITED, TIMEOUT, NETWORK_ERROR, SERVER_ERROR).
Fatal failures return immediately, retryable ones are re-attempted with
backoff until ``max_attempts`` is spent. Nothing is raised across the
boundary: unexpected exceptions become classified ToolErrors.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, computed_field

from gemini_mcp.foundation.errors import Err, ErrorCode, Result, ToolError

from .backoff import Backoff, ExponentialBackoff

if TYPE_CHECKING:
    from gemini_mcp.foundation.config import RetrySettings

logger = logging.getLogger("gemini_mcp.retry")

T = TypeVar("T")
Operation = Callable[[], Awaitable[Result[T, ToolError]]]


class RetryPolicy(BaseModel):
    """Retry configuration.

    Attributes:
        max_attempts: Total attempts including the first (1 = no retries)
        backoff: Delay strategy between attempts
        attempt_timeout: Bound on a single attempt in seconds (None = unbounded)
        on_retry: Optional callback ``(attempt, code, delay)`` before each sleep
    """

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,  # For Backoff protocol
        extra="forbid",
        revalidate_instances="never",
    )

    max_attempts: Annotated[int, Field(ge=1, le=10)] = 3
    backoff: Backoff = Field(default_factory=ExponentialBackoff, repr=False)
    attempt_timeout: PositiveFloat | None = None
    on_retry: Callable[[int, ErrorCode, float], None] | None = Field(default=None, exclude=True, repr=False)

    @classmethod
    def from_settings(cls, settings: RetrySettings, *, attempt_timeout: float | None = None) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            backoff=ExponentialBackoff(
                base=settings.base_delay,
                max_delay=settings.max_delay,
                multiplier=settings.multiplier,
                jitter=settings.jitter,
            ),
            attempt_timeout=attempt_timeout,
        )

    @computed_field
    @property
    def is_disabled(self) -> bool:
        return self.max_attempts == 1


# Singleton for no-retry policy
NO_RETRY = RetryPolicy(max_attempts=1)


@dataclass(slots=True)
class RetryState:
    """Progress of one ``execute`` call."""
    attempt: int = 0
    next_delay: float = 0.0
    last_error: ToolError | None = None


class RetryExecutor:
    """Runs Result-returning async operations under a RetryPolicy.

    Example:
        >>> executor = RetryExecutor(RetryPolicy(max_attempts=3))
        >>> result = await executor.execute(lambda: client.generate(model, prompt), label="gemini-query", idempotent=True)
    """

    __slots__ = ("policy", "_sleep")

    def __init__(self, policy: RetryPolicy | None = None, *, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def _attempt(self, operation: Operation[T], label: str) -> Result[T, ToolError]:
        try:
            async with asyncio.timeout(self.policy.attempt_timeout):
                return await operation()
        except TimeoutError:
            return Err(ToolError.create(label, f"Attempt timed out after {self.policy.attempt_timeout}s", ErrorCode.TIMEOUT))
        except Exception as e:
            logger.warning(f"[{label}] Operation raised {type(e).__name__}: {e}")
            return Err(ToolError.from_exception(label, e))

    async def execute(self, operation: Operation[T], *, label: str = "operation", idempotent: bool = False) -> Result[T, ToolError]:
        """Run ``operation`` until success, a fatal failure, or attempts run out.

        Non-idempotent operations run exactly once.
        """
        policy = self.policy
        limit = policy.max_attempts if idempotent else 1
        state = RetryState()

        while True:
            state.attempt += 1
            result = await self._attempt(operation, label)
            if result.is_ok():
                if state.attempt > 1:
                    logger.info(f"[{label}] Succeeded on attempt {state.attempt}/{limit}")
                return result

            error = state.last_error = result.unwrap_err()
            if not error.retryable:
                logger.debug(f"[{label}] Fatal failure (code: {error.code}), not retrying")
                return Err(error.with_attempts(state.attempt))
            if state.attempt >= limit:
                logger.warning(f"[{label}] Giving up after {state.attempt} attempt(s) (code: {error.code})")
                return Err(error.with_attempts(state.attempt))

            state.next_delay = policy.backoff.delay(state.attempt - 1)
            logger.info(
                f"[{label}] Retry {state.attempt}/{limit - 1} "
                f"after {state.next_delay:.1f}s (code: {error.code})"
            )
            if policy.on_retry:
                policy.on_retry(state.attempt, error.code, state.next_delay)
            await self._sleep(state.next_delay)
