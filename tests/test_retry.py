"""
Tests for retry logic and circuit breaker.
"""

import pytest
import time
import threading

from mathtunis.errors import Unavailable
from mathtunis.retry import (
    CircuitBreaker,
    Deadline,
    RetryError,
    retry_call,
    should_retry_http_status,
)


class TestRetryCall:
    """Test exponential backoff retries."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        def succeeds():
            call_count[0] += 1
            return "success"

        result = retry_call(succeeds, max_retries=3, base_delay=0.1)
        assert result == "success"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        result = retry_call(fails_twice, max_retries=3, base_delay=0.01)
        assert result == "success"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError after all attempts fail."""
        call_count = [0]

        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError):
            retry_call(always_fails, max_retries=2, base_delay=0.01)

        assert call_count[0] == 3  # Initial + 2 retries

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        # Should not retry, raises original exception
        with pytest.raises(ValueError):
            retry_call(raises_value_error, max_retries=3, base_delay=0.01, exceptions=(ConnectionError,))

        assert call_count[0] == 1  # No retries

    def test_exponential_delay(self):
        """Delay should increase exponentially."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            retry_call(
                always_fails,
                max_retries=3,
                base_delay=0.01,
                exponential_base=2.0,
                on_retry=on_retry_callback,
            )

        # Check delays are increasing
        assert len(delays) == 3
        assert delays[0] == 0.01
        assert delays[1] == 0.02
        assert delays[2] == 0.04

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            retry_call(
                always_fails,
                max_retries=5,
                base_delay=0.01,
                max_delay=0.02,
                exponential_base=3.0,
                on_retry=on_retry_callback,
            )

        # All delays should be capped at max_delay
        assert all(d <= 0.02 for d in delays)


class TestCircuitBreaker:
    """Test circuit breaker pattern."""

    def test_closed_state_allows_calls(self):
        """Circuit starts closed and allows calls."""
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=1)

        def successful_func():
            return "success"

        result = breaker.call(successful_func)
        assert result == "success"
        assert breaker.state == CircuitBreaker.CLOSED

    def test_opens_after_threshold(self):
        """Circuit opens after failure threshold."""
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=1)

        def failing_func():
            raise ConnectionError("Test failure")

        # Fail 3 times to reach threshold
        for i in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(failing_func)

        assert breaker.state == CircuitBreaker.OPEN

        # Next call should be blocked
        with pytest.raises(Unavailable, match="is OPEN"):
            breaker.call(failing_func)

    def test_open_error_names_the_strategy(self):
        """The blocked call is attributed to the guarded strategy."""
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60, name="inference")

        def failing_func():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            breaker.call(failing_func)

        with pytest.raises(Unavailable) as exc_info:
            breaker.call(lambda: "never")

        assert exc_info.value.strategy == "inference"
        assert exc_info.value.kind == "unavailable"

    def test_half_open_after_timeout(self):
        """Circuit transitions to half-open after recovery timeout."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0.1)

        def failing_func():
            raise ConnectionError("Test")

        # Open the circuit
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(failing_func)

        assert breaker.state == CircuitBreaker.OPEN

        # Wait for recovery timeout
        time.sleep(0.15)

        # Next call should attempt (half-open)
        with pytest.raises(ConnectionError):
            breaker.call(failing_func)

        # The trial call failed, so the circuit opens again
        assert breaker.state == CircuitBreaker.OPEN

    def test_closes_on_success_in_half_open(self):
        """Successful call in half-open state closes circuit."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0.1)

        call_count = [0]

        def sometimes_fails():
            call_count[0] += 1
            if call_count[0] <= 2:
                raise ConnectionError("Fail")
            return "success"

        # Open the circuit
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(sometimes_fails)

        assert breaker.state == CircuitBreaker.OPEN

        # Wait and try again
        time.sleep(0.15)
        result = breaker.call(sometimes_fails)

        assert result == "success"
        assert breaker.state == CircuitBreaker.CLOSED

    def test_manual_reset(self):
        """Manual reset should close the circuit."""
        breaker = CircuitBreaker(failure_threshold=2)

        def failing_func():
            raise ConnectionError("Test")

        # Open the circuit
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(failing_func)

        assert breaker.state == CircuitBreaker.OPEN

        breaker.reset()
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 0


class TestHttpStatus:
    """Test retryable status detection."""

    def test_http_status_retry_logic(self):
        """Should correctly identify retryable HTTP status codes."""
        # Retryable
        assert should_retry_http_status(408)  # Timeout
        assert should_retry_http_status(429)  # Rate limit
        assert should_retry_http_status(500)  # Server error
        assert should_retry_http_status(502)  # Bad gateway
        assert should_retry_http_status(503)  # Service unavailable

        # Not retryable
        assert not should_retry_http_status(200)  # Success
        assert not should_retry_http_status(404)  # Not found
        assert not should_retry_http_status(403)  # Forbidden
        assert not should_retry_http_status(401)  # Unauthorized


class TestDeadline:
    """Test the monotonic time budget."""

    def test_remaining_never_negative(self):
        deadline = Deadline(0.01)
        time.sleep(0.02)

        assert deadline.expired()
        assert deadline.remaining() == 0.0

    def test_fresh_deadline(self):
        deadline = Deadline(5)

        assert not deadline.expired()
        assert 4.5 < deadline.remaining() <= 5
        assert deadline.elapsed() < 0.5


class TestBudgetAwareRetry:
    """retry_call stops early on deadlines and cancellation."""

    def test_no_retry_past_deadline(self):
        """A backoff longer than the remaining budget is not started."""
        call_count = [0]

        def fails():
            call_count[0] += 1
            raise ConnectionError("down")

        start = time.monotonic()
        with pytest.raises(RetryError, match="budget"):
            retry_call(fails, max_retries=5, base_delay=1.0, deadline=Deadline(0.2))

        assert call_count[0] == 1
        assert time.monotonic() - start < 0.5

    def test_cancel_interrupts_backoff(self):
        """Setting the cancel event wakes the backoff sleep."""
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()

        def fails():
            raise ConnectionError("down")

        start = time.monotonic()
        try:
            with pytest.raises(RetryError, match="Cancelled"):
                retry_call(fails, max_retries=3, base_delay=5.0, cancel=cancel)
        finally:
            timer.cancel()

        assert time.monotonic() - start < 1.0

    def test_cause_is_kept(self):
        def fails():
            raise ConnectionError("down")

        with pytest.raises(RetryError) as exc_info:
            retry_call(fails, max_retries=0)

        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_passes_arguments(self):
        assert retry_call(lambda a, b=0: a + b, 1, b=2) == 3


class TestCircuitBreakerSharing:
    """One breaker guards a strategy for all concurrent resolutions."""

    def test_concurrent_failures_counted(self):
        breaker = CircuitBreaker(failure_threshold=50, expected_exception=ConnectionError)

        def failing_func():
            raise ConnectionError("down")

        def worker():
            for _ in range(10):
                try:
                    breaker.call(failing_func)
                except ConnectionError:
                    pass

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert breaker.failure_count == 40
        assert breaker.state == CircuitBreaker.CLOSED

    def test_unexpected_exceptions_not_counted(self):
        breaker = CircuitBreaker(failure_threshold=1, expected_exception=Unavailable)

        with pytest.raises(ValueError):
            breaker.call(lambda: int("x"))

        assert breaker.state == CircuitBreaker.CLOSED
