"""Backoff strategies for retry policies.

Delays are computed per retry (0-indexed: the first retry, i.e. the second
attempt, is retry 0).
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class Backoff(Protocol):
    """Protocol for backoff delay calculation."""

    def delay(self, attempt: int) -> float:
        """Delay in seconds before 0-indexed retry ``attempt``."""
        ...


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Capped exponential backoff with downward jitter.

    Delay = min(base * (multiplier ^ attempt), max_delay) * (1 - jitter * U[0, 1))

    Jitter only shortens a delay, so the cap holds after jitter and the
    expected delay is non-decreasing in ``attempt``.

    Attributes:
        base: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay cap in seconds (default: 30.0)
        multiplier: Exponential growth factor (default: 2.0)
        jitter: Fraction of the delay that may be removed at random, 0-1 (default: 0.25)
        rng: Uniform [0, 1) source, injectable for deterministic tests
    """

    base: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.25
    rng: Callable[[], float] = field(default=random.random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")

    def ceiling(self, attempt: int) -> float:
        """Un-jittered delay for ``attempt``."""
        return min(self.base * (self.multiplier ** attempt), self.max_delay)

    def delay(self, attempt: int) -> float:
        d = self.ceiling(attempt)
        return d * (1.0 - self.jitter * self.rng()) if self.jitter else d
