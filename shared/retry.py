"""
Retry and backoff helpers for broker and backend connections.

``retry_async`` retries a bounded number of attempts (startup). ``Backoff``
serves loops that retry forever and only need to know how long to wait after
each consecutive failure.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    backoff_strategy: str = "exponential"


class RetryError(Exception):
    """Raised when all retry attempts are exhausted; keeps the last failure."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay to wait after failed ``attempt`` (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        spread = delay * 0.1
        delay += random.uniform(-spread, spread)

    return max(0.0, delay)


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    *,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    config: Optional[RetryConfig] = None,
    name: Optional[str] = None,
) -> Any:
    """Await ``operation`` until it succeeds or ``config.max_attempts`` is reached.

    Only ``exceptions`` are retried; anything else propagates immediately.
    Exhaustion raises RetryError chained to the last failure.
    """
    config = config or RetryConfig()
    name = name or getattr(operation, "__name__", "operation")
    logger = get_logger(f"retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await operation()
        except exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    operation=name,
                    attempts=attempt,
                    error=str(e)
                )
                raise RetryError(
                    f"{name} failed after {config.max_attempts} attempts",
                    last_exception=e,
                    attempts=config.max_attempts
                ) from e

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Attempt failed, retrying",
                operation=name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay=round(delay, 3),
                error=str(e)
            )
            await asyncio.sleep(delay)
        else:
            if attempt > 1:
                logger.info("Retry succeeded", operation=name, attempt=attempt)
            return result


class Backoff:
    """Consecutive-failure counter for loops that never give up."""

    def __init__(self, config: RetryConfig):
        self.config = config
        self.failures = 0

    def failure(self) -> float:
        """Record a failure and return how long to wait before the next try."""
        self.failures += 1
        return calculate_delay(self.failures, self.config)

    def reset(self):
        self.failures = 0
