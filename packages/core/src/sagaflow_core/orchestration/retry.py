"""RetryPolicy — max attempts with fixed or exponential backoff."""

from __future__ import annotations

import random
from enum import Enum


class BackoffKind(str, Enum):
    """Shape of the delay between attempts."""

    FIXED = "FIXED"
    EXPONENTIAL = "EXPONENTIAL"


class RetryPolicy:
    """Configurable retry for step actions.

    For forward actions the policy only applies to failures the step author
    classifies as retryable (``StepFailure(retryable=True)``, timeouts, or
    an exception listed in ``retry_on``). Compensating actions retry every
    failure until ``max_attempts`` is exhausted.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        backoff: BackoffKind = BackoffKind.EXPONENTIAL,
        base_delay: float = 0.5,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
        jitter: bool = False,
        retry_on: tuple[type[BaseException], ...] = (),
    ) -> None:
        """Configure retry behaviour.

        Args:
            max_attempts: Maximum number of invocations (including the first).
            backoff: ``FIXED`` waits ``base_delay`` every time; ``EXPONENTIAL``
                waits ``base_delay * multiplier ** (attempt - 1)``.
            base_delay: Delay in seconds before the first retry.
            multiplier: Growth factor for exponential backoff.
            max_delay: Cap on any single delay, in seconds.
            jitter: If True, multiply each delay by a random factor in [0.5, 1.5].
            retry_on: Plain exception types treated as retryable for
                forward actions.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("base_delay and max_delay must be >= 0")
        if base_delay > max_delay:
            raise ValueError("base_delay must be <= max_delay")
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter
        self.retry_on = retry_on

    @classmethod
    def fixed(cls, max_attempts: int, delay: float = 0.0) -> RetryPolicy:
        """Retry up to *max_attempts* times, waiting *delay* seconds in between."""
        return cls(
            max_attempts=max_attempts,
            backoff=BackoffKind.FIXED,
            base_delay=delay,
            max_delay=max(delay, 0.0),
        )

    @classmethod
    def exponential(
        cls,
        max_attempts: int,
        base_delay: float = 0.5,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
    ) -> RetryPolicy:
        """Retry with exponentially growing delays."""
        return cls(
            max_attempts=max_attempts,
            backoff=BackoffKind.EXPONENTIAL,
            base_delay=base_delay,
            multiplier=multiplier,
            max_delay=max_delay,
        )

    @classmethod
    def none(cls) -> RetryPolicy:
        """Single attempt, no retries."""
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0)

    def should_retry(self, attempt: int) -> bool:
        """Return True if another attempt is allowed (attempt is 1-based)."""
        return 1 <= attempt < self.max_attempts

    def is_retryable(self, exc: BaseException) -> bool:
        """Return True if a plain exception matches ``retry_on``."""
        return bool(self.retry_on) and isinstance(exc, self.retry_on)

    def delay_for_attempt(self, attempt: int) -> float:
        """Return the delay in seconds after the given 1-based failed attempt."""
        if attempt < 1:
            return 0.0
        if self.backoff == BackoffKind.FIXED:
            delay = self.base_delay
        else:
            delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.jitter:
            delay = delay * (0.5 + random.random())  # noqa: S311
        return float(min(max(0.0, delay), self.max_delay))

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"backoff={self.backoff.value}, base_delay={self.base_delay})"
        )
