"""
Retry for workflow steps.

A step that declares ``wf:retryCount`` is run under a RetryPolicy: failed
attempts are retried after a backoff delay until the attempt budget is
spent. Jitter is off by default so retried runs stay reproducible.

Design Philosophy:
- Policies are plain data built from step configuration
- Composable backoff strategies
- Cancellation is never retried
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from kgflow.errors import CancelledError, StepError

if TYPE_CHECKING:
    from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Backoff Strategies
# =============================================================================


class BackoffStrategy(ABC):
    """Delay calculation between retry attempts."""

    @abstractmethod
    def get_delay(self, attempt: int) -> float:
        """
        Delay in seconds before the next attempt.

        Args:
            attempt: Attempt that just failed (1-indexed)
        """
        ...


@dataclass
class NoBackoff(BackoffStrategy):
    def get_delay(self, attempt: int) -> float:
        return 0.0


@dataclass
class ConstantBackoff(BackoffStrategy):
    """
    Fixed delay between retries.

    Example:
        backoff = ConstantBackoff(delay=0.5)
        # Always waits half a second
    """

    delay: float = 1.0

    def get_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class ExponentialBackoff(BackoffStrategy):
    """
    Exponentially increasing delay between retries.

    delay = base * (multiplier ^ (attempt - 1)), capped at max_delay

    Example:
        backoff = ExponentialBackoff(base=0.1)
        # Attempt 1: 0.1s, Attempt 2: 0.2s, Attempt 3: 0.4s, ...
    """

    base: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: bool = False
    jitter_factor: float = 0.25

    def get_delay(self, attempt: int) -> float:
        delay = min(self.base * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))
        return delay


BACKOFFS = {"constant": ConstantBackoff, "exponential": ExponentialBackoff}


# =============================================================================
# Retry Policy
# =============================================================================


@dataclass
class RetryPolicy:
    """
    How many times to run a step and how long to wait between attempts.

    Example:
        policy = RetryPolicy.from_step(retry_count=2, delay_ms=100, backoff="exponential")
        # Three attempts: wait 0.1s, then 0.2s
    """

    max_attempts: int = 1
    backoff: BackoffStrategy = field(default_factory=NoBackoff)
    retry_on: tuple[type[Exception], ...] = (StepError,)

    @classmethod
    def from_step(cls, retry_count: int = 0, delay_ms: int = 0, backoff: str = "constant") -> RetryPolicy:
        delay = max(0, delay_ms) / 1000
        if backoff == "exponential":
            strategy: BackoffStrategy = ExponentialBackoff(base=delay)
        elif delay > 0:
            strategy = ConstantBackoff(delay=delay)
        else:
            strategy = NoBackoff()
        return cls(max_attempts=max(1, retry_count + 1), backoff=strategy)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        if attempt >= self.max_attempts or isinstance(error, CancelledError):
            return False
        return isinstance(error, self.retry_on)

    def get_delay(self, attempt: int) -> float:
        return self.backoff.get_delay(attempt)


NO_RETRY = RetryPolicy(max_attempts=1)


# =============================================================================
# Retry Executor
# =============================================================================


@dataclass
class RetryResult:
    success: bool
    result: Any = None
    attempts: int = 0
    total_delay: float = 0.0
    errors: list[Exception] = field(default_factory=list)

    @property
    def final_error(self) -> Exception | None:
        return self.errors[-1] if self.errors else None


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str = "operation",
    on_retry: Callable[[int, Exception, float], None] | None = None,
    token: CancellationToken | None = None,
) -> RetryResult:
    """
    Run an async operation under ``policy``.

    Exceptions the policy does not retry are recorded as the final error;
    ``asyncio.CancelledError`` always propagates. A cancelled ``token`` ends
    the backoff wait early with a CancelledError as the final error.

    Example:
        result = await with_retry(lambda: runner.attempt(step), policy, "fetch")
        if not result.success:
            raise result.final_error
    """
    errors: list[Exception] = []
    total_delay = 0.0
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await operation()
            return RetryResult(success=True, result=result, attempts=attempt, total_delay=total_delay, errors=errors)
        except Exception as e:
            errors.append(e)
            if not policy.should_retry(attempt, e):
                if policy.max_attempts > 1:
                    logger.error(f"[retry] {operation_name}: failed after {attempt} attempts, last error: {e}")
                return RetryResult(success=False, attempts=attempt, total_delay=total_delay, errors=errors)

            delay = policy.get_delay(attempt)
            total_delay += delay
            logger.warning(
                f"[retry] {operation_name}: attempt {attempt}/{policy.max_attempts} "
                f"failed with {type(e).__name__}: {e}, retrying in {delay:.2f}s"
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)
            if token is None:
                await asyncio.sleep(delay)
                continue
            try:
                await token.sleep(delay)
            except CancelledError as cancelled:
                errors.append(cancelled)
                return RetryResult(success=False, attempts=attempt, total_delay=total_delay, errors=errors)


__all__ = [
    "BACKOFFS",
    "NO_RETRY",
    "BackoffStrategy",
    "ConstantBackoff",
    "ExponentialBackoff",
    "NoBackoff",
    "RetryPolicy",
    "RetryResult",
    "with_retry",
]
