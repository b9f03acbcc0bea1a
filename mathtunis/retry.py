"""
Retry logic with exponential backoff for handling transient failures.

Retries here are budget-aware: a strategy only has a few seconds to answer,
so backoff never sleeps past the caller's deadline and wakes up immediately
when the resolution is cancelled.
"""

import threading
import time
from datetime import datetime
from typing import Callable, Optional, Tuple, Type

from .errors import Unavailable


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class Deadline:
    """A monotonic point in time after which work must stop."""

    def __init__(self, budget: float):
        self.budget = budget
        self.started = time.monotonic()
        self.expires_at = self.started + budget

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


def retry_call(
    func: Callable,
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    deadline: Optional[Deadline] = None,
    cancel: Optional[threading.Event] = None,
    **kwargs,
):
    """
    Call func, retrying with exponential backoff on the given exceptions.

    Args:
        func: Callable to invoke
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        deadline: Optional Deadline; no retry is started that would end past it
        cancel: Optional Event; backoff sleeps are cut short when it is set

    Raises:
        RetryError: When attempts are exhausted, the deadline would be
            overrun, or the cancel event is set during backoff.
    """
    delay = base_delay

    for attempt in range(max_retries + 1):
        try:
            return func(*args, **kwargs)
        except exceptions as e:
            if attempt >= max_retries:
                raise RetryError(
                    f"Failed after {max_retries + 1} attempts: {str(e)}"
                ) from e

            current_delay = min(delay, max_delay)
            if deadline is not None and current_delay >= deadline.remaining():
                raise RetryError(
                    f"Retry budget exhausted after {attempt + 1} attempts: {str(e)}"
                ) from e

            if on_retry:
                on_retry(attempt + 1, e, current_delay)

            if cancel is not None:
                if cancel.wait(current_delay):
                    raise RetryError(f"Cancelled after {attempt + 1} attempts: {str(e)}") from e
            else:
                time.sleep(current_delay)
            delay *= exponential_base

    # Unreachable with max_retries >= 0
    raise RetryError("Retry loop exited without a result")


class CircuitBreaker:
    """
    Circuit breaker pattern to prevent repeated calls to failing services.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests are blocked
    - HALF_OPEN: Testing if service has recovered

    A breaker is shared by every resolution that uses the same adapter, so
    state changes happen under a lock.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        expected_exception: Type[Exception] = Exception,
        name: str = "service",
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before attempting recovery
            expected_exception: Exception type that counts as failure
            name: Strategy name carried by the Unavailable it raises
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name

        self._lock = threading.Lock()
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = self.CLOSED

    def call(self, func: Callable, *args, **kwargs):
        """
        Execute function with circuit breaker protection.

        Raises:
            Unavailable: If circuit is OPEN
            Original exception: If function fails in CLOSED/HALF_OPEN state
        """
        with self._lock:
            if self.state == self.OPEN:
                if self._should_attempt_reset():
                    self.state = self.HALF_OPEN
                else:
                    raise Unavailable(
                        f"Circuit breaker for {self.name} is OPEN. "
                        f"Retry after {self._time_until_reset():.0f}s",
                        strategy=self.name,
                    )

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset."""
        if self.last_failure_time is None:
            return True

        elapsed = (datetime.now() - self.last_failure_time).total_seconds()
        return elapsed >= self.recovery_timeout

    def _time_until_reset(self) -> float:
        """Calculate seconds until circuit can be tested."""
        if self.last_failure_time is None:
            return 0

        elapsed = (datetime.now() - self.last_failure_time).total_seconds()
        return max(0, self.recovery_timeout - elapsed)

    def _on_success(self):
        with self._lock:
            self.failure_count = 0
            self.state = self.CLOSED

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = datetime.now()

            if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.state = self.OPEN

    def reset(self):
        """Manually reset the circuit breaker."""
        with self._lock:
            self.failure_count = 0
            self.last_failure_time = None
            self.state = self.CLOSED


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    retryable_codes = {
        408,  # Request Timeout
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable (also: model loading)
        504,  # Gateway Timeout
    }

    return status_code in retryable_codes
