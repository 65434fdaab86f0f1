"""
Retry logic with exponential backoff using tenacity.
"""
import random
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

logger = structlog.get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        OSError,
    )


def _add_jitter(delay: float, jitter_factor: float = 0.1) -> float:
    """Add random jitter to delay to prevent thundering herd."""
    if jitter_factor > 0:
        jitter_amount = delay * jitter_factor * (random.random() * 2 - 1)
        return max(0.1, delay + jitter_amount)
    return delay


def compute_backoff_delay(attempt: int, config: Optional[RetryConfig] = None) -> float:
    """
    Delay before the next execution of a failed task.

    Args:
        attempt: Number of failures so far (1 for the first failure)
        config: Backoff parameters

    Returns:
        Delay in seconds, capped at ``config.max_delay``
    """
    config = config or RetryConfig()
    if attempt < 1:
        return 0.0

    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay = min(_add_jitter(delay), config.max_delay)
    return delay


def create_async_retry_decorator(
    config: Optional[RetryConfig] = None,
    service_name: str = "Unknown Service",
) -> Callable:
    """Create a retry decorator for async gateway calls."""

    config = config or RetryConfig()

    def _before_sleep(retry_state: RetryCallState) -> None:
        """Log retry attempts."""
        logger.warning(
            "Retrying failed async operation",
            service=service_name,
            attempt=retry_state.attempt_number,
            max_attempts=config.max_attempts,
            delay=retry_state.next_action.sleep,
            exception=str(retry_state.outcome.exception()),
        )

    wait_strategy = wait_random_exponential(
        multiplier=config.base_delay,
        max=config.max_delay,
    )

    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_strategy,
        retry=retry_if_exception_type(config.retryable_exceptions),
        before_sleep=_before_sleep,
        reraise=True,
    )


def get_gateway_retry_config(max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 10.0) -> RetryConfig:
    """Get retry configuration for persistence and cache calls."""
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        retryable_exceptions=(
            ConnectionError,
            TimeoutError,
            OSError,
        ),
    )


def get_task_backoff_config(base_delay: float = 5.0, max_delay: float = 300.0) -> RetryConfig:
    """Get backoff configuration for re-queued tasks."""
    return RetryConfig(
        base_delay=base_delay,
        max_delay=max_delay,
        exponential_base=2.0,
        jitter=True,
    )
