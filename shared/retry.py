"""
Retry mechanism for resilient operations.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential"):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


async def retry_async(func: Callable[..., Awaitable[Any]],
                      *args,
                      exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                      config: Optional[RetryConfig] = None,
                      on_retry: Optional[Callable[[int, BaseException], None]] = None,
                      sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
                      **kwargs) -> Any:
    """Await ``func`` until it succeeds or the attempt budget runs out.

    Only ``exceptions`` are retried; anything else propagates immediately.
    ``on_retry`` is called with the failed attempt number before sleeping.
    """
    if config is None:
        config = RetryConfig()
    if sleep is None:
        sleep = asyncio.sleep

    name = getattr(func, "__name__", "call")
    logger = get_logger(f"retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            logger.debug(
                "Retry attempt",
                attempt=attempt,
                max_attempts=config.max_attempts,
                function=name
            )

            result = await func(*args, **kwargs)

            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=name)

            return result

        except exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    function=name,
                    error=str(e)
                )
                raise RetryError(
                    f"Function {name} failed after {config.max_attempts} attempts",
                    last_exception=e,
                    attempts=config.max_attempts
                ) from e

            delay = calculate_delay(attempt, config)

            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=name,
                error=str(e)
            )

            if on_retry is not None:
                on_retry(attempt, e)

            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay between retry attempts."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
