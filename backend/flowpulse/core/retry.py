"""Exponential backoff retry shared by every fallible downstream call."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from flowpulse.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff parameters; delays are in seconds."""

    max_attempts: int = 5
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 20.0
    jitter: float = 0.15

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    def base_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), without jitter."""
        return min(self.max_delay, self.initial_delay * self.multiplier ** (attempt - 1))

    def delay(self, attempt: int, rng: Callable[[float, float], float] = random.uniform) -> float:
        factor = rng(1 - self.jitter, 1 + self.jitter)
        return self.base_delay(attempt) * factor

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.webhook_max_attempts,
            initial_delay=settings.webhook_initial_delay_seconds,
            multiplier=settings.webhook_backoff_multiplier,
            max_delay=settings.webhook_max_delay_seconds,
        )


class RetryExhaustedError(Exception):
    """Raised when every attempt failed; wraps the last error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``policy.max_attempts`` is reached.

    ``on_retry(attempt, error, delay)`` runs before each backoff sleep.
    Errors outside ``retry_on`` propagate immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                raise RetryExhaustedError(attempt, exc) from exc
            delay = policy.delay(attempt)
            logger.warning(
                "Attempt %s/%s failed: %s; retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep(delay)
