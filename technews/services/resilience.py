"""
Resilience patterns for external calls.

Provides an explicit retry policy with exponential backoff, a blocking
interval gate for rate limiting, and the error taxonomy the stages use to
decide between retrying, parking an item, or skipping a whole stage.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class TransientServiceError(Exception):
    """External failure worth retrying (timeouts, 429, 5xx)."""

    pass


class RateLimitError(TransientServiceError):
    """Raised when an external API returns a rate limit error."""

    pass


class ServiceTimeoutError(TransientServiceError):
    """Raised when an external API call times out."""

    pass


class ServiceUnavailableError(TransientServiceError):
    """Raised when an external API returns a server error (5xx) or is unreachable."""

    pass


class PermanentServiceError(Exception):
    """External failure that will not improve on retry (4xx, malformed payload)."""

    pass


class ConfigurationError(Exception):
    """A stage cannot run at all, e.g. missing credentials. Skips the stage."""

    pass


RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (TransientServiceError,)


# -----------------------------------------------------------------------------
# Retry
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff settings for one class of external calls.

    The wait after the n-th failed attempt is
    min(initial_delay * backoff_factor ** (n - 1), max_delay).
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return min(self.initial_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            backoff_factor=settings.RETRY_BACKOFF_FACTOR,
        )


DEFAULT_RETRY_POLICY = RetryPolicy()


def retry_call(
    func: Callable[..., T],
    *args: Any,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    retry_exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call `func` and retry it on `retry_exceptions` according to `policy`.

    Exceptions outside `retry_exceptions` propagate on the first occurrence.
    The last retryable exception is re-raised once attempts are exhausted.
    """
    name = getattr(func, "__name__", repr(func))
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except retry_exceptions as e:
            if attempt == attempts:
                logger.error(f"{name} failed after {attempts} attempts: {e}")
                raise

            wait_time = policy.delay_for(attempt)
            logger.warning(f"{name} attempt {attempt} failed: {e}. Retrying in {wait_time:.1f}s...")
            sleep(wait_time)

    raise RuntimeError(f"{name} failed without exception")


def with_sync_retry(
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    retry_exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
) -> Callable:
    """
    Decorator form of retry_call.

    Usage:
        @with_sync_retry(RetryPolicy(max_attempts=5))
        def create_page(...):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return retry_call(func, *args, policy=policy, retry_exceptions=retry_exceptions, **kwargs)

        return wrapper

    return decorator


# -----------------------------------------------------------------------------
# Interval Gate
# -----------------------------------------------------------------------------


class IntervalGate:
    """
    Blocking rate limiter: successive acquire() calls return at least
    `min_interval` seconds apart. Safe to share between worker threads of
    one adapter; each adapter owns its own gate.

    Usage:
        gate = IntervalGate.per_second(3)
        for payload in payloads:
            gate.acquire()
            client.create_page(payload)
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._next_allowed: float | None = None
        self._lock = threading.Lock()

    @classmethod
    def per_second(cls, rate: float, **kwargs: Any) -> "IntervalGate":
        return cls(1.0 / rate if rate > 0 else 0.0, **kwargs)

    def acquire(self) -> float:
        """Block until the next slot is available. Returns the seconds waited."""
        with self._lock:
            now = self._clock()
            waited = 0.0
            if self._next_allowed is not None and now < self._next_allowed:
                waited = self._next_allowed - now
                self._sleep(waited)
                now = self._next_allowed
            self._next_allowed = now + self.min_interval
            return waited

    def reset(self) -> None:
        with self._lock:
            self._next_allowed = None
