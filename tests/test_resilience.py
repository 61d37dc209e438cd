"""
Tests for collaborator resilience: circuit breaker, retry policy and timeout.
"""

import threading
import time

import pytest


class TestCircuitBreaker:
    """Tests for circuit breaker pattern."""

    def test_circuit_starts_closed(self):
        """Circuit breaker starts in CLOSED state."""
        from landreg.resilience import CircuitBreaker, CircuitState

        breaker = CircuitBreaker("test", failure_threshold=3)
        assert breaker.state == CircuitState.CLOSED

    def test_circuit_opens_after_failures(self):
        """Circuit opens after reaching failure threshold."""
        from landreg.resilience import CircuitBreaker, CircuitState

        def boom():
            raise ValueError("boom")

        breaker = CircuitBreaker("test", failure_threshold=3)
        for _ in range(3):
            with pytest.raises(ValueError):
                breaker.call(boom)

        assert breaker.state == CircuitState.OPEN
        assert breaker.metrics.consecutive_failures == 3

    def test_open_circuit_rejects_calls(self):
        """Open circuit rejects calls without invoking them."""
        from landreg.resilience import CircuitBreaker, CircuitBreakerError

        breaker = CircuitBreaker("test", failure_threshold=1)
        try:
            with breaker:
                raise ValueError("test")
        except ValueError:
            pass

        called = []
        with pytest.raises(CircuitBreakerError):
            breaker.call(lambda: called.append(1))
        assert called == []
        assert breaker.metrics.rejected_calls == 1

    def test_half_open_probe_closes_circuit(self):
        """After the reset timeout a successful probe closes the circuit."""
        from landreg.resilience import CircuitBreaker, CircuitState

        transitions = []
        breaker = CircuitBreaker(
            "test",
            failure_threshold=1,
            reset_timeout_seconds=0.05,
            on_state_change=lambda old, new: transitions.append((old, new)),
        )
        try:
            with breaker:
                raise ValueError("test")
        except ValueError:
            pass

        time.sleep(0.1)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert transitions == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    def test_half_open_failure_reopens(self):
        from landreg.resilience import CircuitBreaker, CircuitState

        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout_seconds=0.05)
        for _ in range(2):
            try:
                with breaker:
                    raise ValueError("test")
            except ValueError:
                pass
            time.sleep(0.1)
            assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.metrics.failed_calls == 2

    def test_excluded_exceptions_do_not_count(self):
        from landreg.resilience import CircuitBreaker, CircuitState

        breaker = CircuitBreaker("test", failure_threshold=1, excluded_exceptions=(KeyError,))
        try:
            with breaker:
                raise KeyError("missing")
        except KeyError:
            pass
        assert breaker.state == CircuitState.CLOSED

    def test_circuit_decorator_and_reset(self):
        """Circuit breaker works as decorator; reset clears metrics."""
        from landreg.resilience import CircuitBreaker

        breaker = CircuitBreaker("test", failure_threshold=5)

        @breaker
        def success_func():
            return 42

        assert success_func() == 42
        assert breaker.metrics.successful_calls == 1
        breaker.reset()
        assert breaker.metrics.successful_calls == 0
        assert breaker.metrics.to_dict()["total_calls"] == 0


class TestRetryPolicy:
    """Tests for retry policy pattern."""

    def test_retry_succeeds_eventually(self):
        """Retry succeeds after transient failures."""
        from landreg.resilience import RetryPolicy

        attempt_count = [0]

        def flaky_function():
            attempt_count[0] += 1
            if attempt_count[0] < 3:
                raise ValueError("transient error")
            return "success"

        sleeps = []
        retry = RetryPolicy(max_attempts=5, base_delay_seconds=0.01, sleep=sleeps.append)
        assert retry.execute(flaky_function) == "success"
        assert attempt_count[0] == 3
        assert len(sleeps) == 2

    def test_retry_exhausted(self):
        """Retry raises after exhausting attempts."""
        from landreg.resilience import RetryExhaustedError, RetryPolicy

        def always_fails():
            raise ValueError("always fails")

        retry = RetryPolicy(max_attempts=3, base_delay_seconds=0.0)
        with pytest.raises(RetryExhaustedError) as exc_info:
            retry.execute(always_fails)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, ValueError)
        assert retry.metrics.retries_exhausted == 1

    def test_non_retryable_propagates_immediately(self):
        from landreg.resilience import RetryPolicy

        calls = [0]

        def fails():
            calls[0] += 1
            raise PermissionError("denied")

        retry = RetryPolicy(max_attempts=5, base_delay_seconds=0.0, non_retryable_exceptions=(PermissionError,))
        with pytest.raises(PermissionError):
            retry.execute(fails)
        assert calls[0] == 1

    @pytest.mark.parametrize("strategy,expected", [
        ("FIXED", [0.1, 0.1, 0.1]),
        ("LINEAR", [0.1, 0.2, 0.3]),
        ("EXPONENTIAL", [0.1, 0.2, 0.4]),
    ])
    def test_backoff_strategies(self, strategy, expected):
        from landreg.resilience import BackoffStrategy, RetryPolicy

        retry = RetryPolicy(base_delay_seconds=0.1, backoff_strategy=BackoffStrategy[strategy])
        assert [round(retry.delay_for(a), 6) for a in (1, 2, 3)] == expected

    def test_jitter_stays_in_bounds(self):
        from landreg.resilience import BackoffStrategy, RetryPolicy

        retry = RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=3.0,
                            backoff_strategy=BackoffStrategy.EXPONENTIAL_JITTER, jitter_factor=0.5)
        for _ in range(50):
            assert 2.0 <= retry.delay_for(2) <= 3.0
            assert retry.delay_for(10) == 3.0

    def test_invalid_attempts(self):
        from landreg.resilience import RetryPolicy

        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestTimeout:
    """Tests for timeout pattern."""

    def test_timeout_succeeds_within_limit(self):
        """Fast calls return their result."""
        from landreg.resilience import Timeout

        timeout = Timeout(seconds=1.0, name="fast")
        assert timeout.execute(lambda: "done") == "done"
        assert timeout.metrics.successful_calls == 1

    def test_timeout_exceeded(self):
        from landreg.resilience import Timeout, TimeoutExceeded

        release = threading.Event()
        timeout = Timeout(seconds=0.05, name="slow")
        try:
            with pytest.raises(TimeoutExceeded) as exc_info:
                timeout.execute(lambda: release.wait(5))
        finally:
            release.set()
        assert exc_info.value.operation == "slow"
        assert timeout.metrics.timed_out_calls == 1

    def test_exceptions_pass_through(self):
        from landreg.resilience import Timeout

        def fails():
            raise LookupError("not there")

        with pytest.raises(LookupError):
            Timeout(seconds=1.0).execute(fails)

    def test_positive_seconds_required(self):
        from landreg.resilience import Timeout

        with pytest.raises(ValueError):
            Timeout(seconds=0)
