"""
Retry policy for platform API calls.

Adapters wrap every HTTP call with ``retry_with_backoff`` using a
``RetryConfig`` injected at construction, so tests and callers control how
hard a flaky store is retried.
"""

import functools
import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from catalog_sync.exceptions import SyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """
    Exponential backoff with optional jitter.

    A server-supplied ``retry_after`` on the raised error (Shopify and
    WooCommerce both send Retry-After with 429s) replaces the computed
    backoff for that attempt, capped at ``max_delay``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        jitter_range: Tuple[float, float] = (0.5, 1.5),
        retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
        non_retryable_exceptions: Tuple[Type[Exception], ...] = (),
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.jitter_range = jitter_range
        self.retryable_exceptions = retryable_exceptions
        self.non_retryable_exceptions = non_retryable_exceptions
        self.sleep = sleep

    def calculate_delay(self, attempt: int, error: Optional[Exception] = None) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return min(float(retry_after), self.max_delay)

        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay *= random.uniform(*self.jitter_range)
        return delay

    def is_retryable(self, exception: Exception) -> bool:
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        # 4xx responses, missing resources and bad payloads fail the same way every time.
        if isinstance(exception, SyncError) and not exception.retryable:
            return False
        return isinstance(exception, self.retryable_exceptions)


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **settings,
):
    """
    Decorator that retries the wrapped call according to a RetryConfig.

    Args:
        config: Retry policy; when omitted one is built from ``settings``
            (any RetryConfig keyword, e.g. ``max_attempts=5``)
        on_retry: Called with the error and the one-based attempt number
            before each wait

    Example:
        @retry_with_backoff(max_attempts=3, base_delay=0.5)
        def fetch_page():
            return adapter.fetch_many()
    """
    if config is None:
        config = RetryConfig(**settings)
    elif settings:
        raise TypeError("Pass either a RetryConfig or keyword settings, not both")

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    attempt += 1
                    if not config.is_retryable(e):
                        logger.debug(f"{func.__name__} failed with non-retryable {type(e).__name__}: {e}")
                        raise
                    if attempt >= config.max_attempts:
                        logger.error(f"{func.__name__} gave up after {attempt} attempts: {e}")
                        raise

                    delay = config.calculate_delay(attempt - 1, e)
                    logger.warning(
                        f"Attempt {attempt}/{config.max_attempts} of {func.__name__} failed: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    if on_retry:
                        on_retry(e, attempt)
                    config.sleep(delay)

        return wrapper
    return decorator
