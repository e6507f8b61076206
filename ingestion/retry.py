"""
Bounded retry with exponential backoff.

The executor wraps a single unit of work. It keeps no state between calls, so
one instance is shared by every batch of a run.
"""

import asyncio
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, TypeVar
import logging

from core.config import settings
from core.exceptions import RetryExhaustedError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    max_attempts is the TOTAL number of tries: the original call counts as
    attempt 1, so max_attempts=3 means try, retry, retry.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1, initial_delay=0.0)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        """Item-level retry policy from ETL settings"""
        return cls(
            max_attempts=settings.ETL_RETRY_ATTEMPTS,
            initial_delay=settings.RETRY_DELAY_MS / 1000,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )

    def delay_for_retry(self, retry_number: int) -> float:
        """Delay before the given retry (1-based): initial_delay * multiplier^(n-1)"""
        return self.initial_delay * (self.backoff_multiplier ** (retry_number - 1))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RetryExecutor:
    """
    Run an async operation under a RetryPolicy.

    Retryable failures are retried after an exponentially growing delay.
    Non-retryable failures propagate immediately without consuming retry
    budget. Exhaustion raises RetryExhaustedError with the attempt count,
    the elapsed time and the last failure.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        classifier: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy
        self.classifier = classifier
        self._sleep = sleep

    async def execute(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """
        Invoke ``operation`` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt
            description: Label used in log messages

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: Every attempt failed with a retryable error
            Exception: The first non-retryable error, unchanged
        """
        started = time.monotonic()
        max_attempts = self.policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                result = await operation()
                if attempt > 1:
                    logger.info(f"{description} succeeded on attempt {attempt}/{max_attempts}")
                return result

            except Exception as e:
                if not self.classifier(e):
                    raise

                if attempt == max_attempts:
                    raise RetryExhaustedError(
                        attempts=attempt,
                        elapsed_seconds=time.monotonic() - started,
                        last_error=e
                    )

                delay = self.policy.delay_for_retry(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{max_attempts}): {e}. "
                    f"Retrying in {delay:.2f} seconds"
                )
                await self._sleep(delay)

        # max_attempts >= 1 is enforced by RetryPolicy
        raise AssertionError("unreachable")
