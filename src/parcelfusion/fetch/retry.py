"""
Retry Policy

Exponential backoff with jitter for transient fetch failures.
"""
import random
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Callable, Optional, Tuple, Type, TypeVar

import requests

from config.settings import settings
from src.parcelfusion.exceptions import TransientFetchError
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    TransientFetchError,
    requests.ConnectionError,
    requests.Timeout,
)


@dataclass
class RetryPolicy:
    """
    Bounded retries with exponential backoff plus random jitter.

    Attributes:
        max_attempts: Total attempts, including the first
        base_delay: Delay before the first retry, in seconds
        max_delay: Cap on the exponential part of the delay
        jitter: Upper bound of the uniform random delay added to each wait
        sleep: Sleep function (replaced in tests)
    """
    max_attempts: int = field(default_factory=lambda: settings.fetch_max_retries)
    base_delay: float = field(default_factory=lambda: settings.fetch_retry_base_delay_seconds)
    max_delay: float = field(default_factory=lambda: settings.fetch_retry_max_delay_seconds)
    jitter: float = field(default_factory=lambda: settings.fetch_retry_jitter_seconds)
    sleep: Callable[[float], None] = time.sleep

    def delay_for(self, attempt: int) -> float:
        """Wait before retry number ``attempt`` (0-based)."""
        backoff = min(self.base_delay * (2 ** attempt), self.max_delay)
        return backoff + (random.uniform(0, self.jitter) if self.jitter > 0 else 0.0)

    def call(
        self,
        func: Callable[[], T],
        retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
        description: str = "operation"
    ) -> T:
        """
        Call ``func`` until it succeeds or attempts run out.

        Raises:
            The last retryable exception once attempts are exhausted; other
            exceptions propagate immediately
        """
        attempts = max(self.max_attempts, 1)
        for attempt in range(attempts):
            try:
                return func()
            except retry_on as e:
                if attempt == attempts - 1:
                    logger.error(
                        "retries_exhausted",
                        operation=description,
                        attempts=attempts,
                        error=str(e)
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "retrying_after_error",
                    operation=description,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    delay_seconds=round(delay, 2),
                    error=str(e)
                )
                self.sleep(delay)
        raise RuntimeError("unreachable")


def with_retry(policy: Optional[RetryPolicy] = None):
    """
    Decorator form of RetryPolicy.call.

    Usage:
        @with_retry(RetryPolicy(max_attempts=5))
        def fetch_count():
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            active = policy or RetryPolicy()
            return active.call(lambda: func(*args, **kwargs), description=func.__name__)
        return wrapper
    return decorator
