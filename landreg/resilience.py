"""
Fault tolerance for collaborator calls.

The workflow engine talks to three collaborators it does not control: the
evidence store, the account directory and the optional ledger. Calls to all
of them are bounded by a ``Timeout``. Ledger anchoring additionally runs
behind a ``CircuitBreaker`` and a bounded ``RetryPolicy`` so a dead ledger
never slows the synchronizer's queue down indefinitely.

    Circuit Breaker     Retry Policy        Timeout
    ├─ CLOSED           ├─ Fixed            ├─ Bounded wait
    ├─ OPEN             ├─ Linear           ├─ Worker abandoned
    ├─ HALF_OPEN        ├─ Exponential      └─ Metrics
    └─ Metrics          └─ Jitter

Usage:

    breaker = CircuitBreaker("ledger-anchor", failure_threshold=5)
    retry = RetryPolicy(max_attempts=3, base_delay_seconds=0.5)
    timeout = Timeout(seconds=10.0, name="ledger-anchor")

    receipt = retry.execute(lambda: breaker.call(lambda: timeout.execute(anchor)))

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import concurrent.futures
import functools
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional, TypeVar

T = TypeVar("T")


# ════════════════════════════════════════════════════════════════════════════
# CIRCUIT BREAKER
# ════════════════════════════════════════════════════════════════════════════


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = auto()      # Calls pass through
    OPEN = auto()        # Calls rejected without reaching the collaborator
    HALF_OPEN = auto()   # Probing for recovery


@dataclass
class CircuitBreakerMetrics:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_transitions: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_failure_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "rejected_calls": self.rejected_calls,
            "state_transitions": self.state_transitions,
            "consecutive_failures": self.consecutive_failures,
        }


class CircuitBreakerError(Exception):
    """Raised when a call is rejected because the breaker is open."""
    def __init__(self, breaker_name: str, state: CircuitState):
        self.breaker_name = breaker_name
        self.state = state
        super().__init__(f"Circuit breaker '{breaker_name}' is {state.name}")


class CircuitBreaker:
    """
    Fails fast once a collaborator has failed ``failure_threshold`` times in
    a row. After ``reset_timeout_seconds`` a limited number of probe calls
    are let through; ``success_threshold`` consecutive successes close the
    circuit again, any failure reopens it.

    Usable as a context manager, a decorator, or via ``call``.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 1,
        reset_timeout_seconds: float = 30.0,
        half_open_max_calls: int = 1,
        excluded_exceptions: tuple = (),
        on_state_change: Optional[Callable[[CircuitState, CircuitState], None]] = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.half_open_max_calls = half_open_max_calls
        self.excluded_exceptions = excluded_exceptions
        self._state = CircuitState.CLOSED
        self._metrics = CircuitBreakerMetrics()
        self._lock = threading.RLock()
        self._opened_at = time.monotonic()
        self._half_open_calls = 0
        self._on_state_change = on_state_change

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_reset_timeout()
            return self._state

    @property
    def metrics(self) -> CircuitBreakerMetrics:
        with self._lock:
            return CircuitBreakerMetrics(**self._metrics.__dict__)

    def _check_reset_timeout(self) -> None:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._opened_at >= self.reset_timeout_seconds:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._metrics.state_transitions += 1
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._metrics.consecutive_successes = 0
        elif new_state == CircuitState.CLOSED:
            self._metrics.consecutive_failures = 0
        if self._on_state_change:
            self._on_state_change(old_state, new_state)

    def _acquire(self) -> bool:
        with self._lock:
            self._check_reset_timeout()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
            self._metrics.rejected_calls += 1
            return False

    def _record_success(self) -> None:
        with self._lock:
            self._metrics.total_calls += 1
            self._metrics.successful_calls += 1
            self._metrics.consecutive_successes += 1
            self._metrics.consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                if self._metrics.consecutive_successes >= self.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    def _record_failure(self, exc: BaseException) -> None:
        with self._lock:
            if isinstance(exc, self.excluded_exceptions):
                return
            self._metrics.total_calls += 1
            self._metrics.failed_calls += 1
            self._metrics.last_failure_time = datetime.now(timezone.utc)
            self._metrics.consecutive_failures += 1
            self._metrics.consecutive_successes = 0
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._metrics.consecutive_failures >= self.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def call(self, func: Callable[[], T]) -> T:
        """Invoke ``func`` under breaker protection."""
        if not self._acquire():
            raise CircuitBreakerError(self.name, self._state)
        try:
            result = func()
        except Exception as e:
            self._record_failure(e)
            raise
        self._record_success()
        return result

    def __enter__(self):
        if not self._acquire():
            raise CircuitBreakerError(self.name, self._state)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self._record_failure(exc_val)
        else:
            self._record_success()
        return False

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return self.call(lambda: func(*args, **kwargs))
        return wrapper

    def reset(self) -> None:
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._metrics = CircuitBreakerMetrics()


# ════════════════════════════════════════════════════════════════════════════
# RETRY POLICY
# ════════════════════════════════════════════════════════════════════════════


class BackoffStrategy(Enum):
    FIXED = auto()
    LINEAR = auto()
    EXPONENTIAL = auto()
    EXPONENTIAL_JITTER = auto()


@dataclass
class RetryMetrics:
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retries_exhausted: int = 0
    total_retry_delay_seconds: float = 0.0


class RetryExhaustedError(Exception):
    """Raised when every attempt failed with a retryable error."""
    def __init__(self, attempts: int, last_exception: BaseException):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Retry exhausted after {attempts} attempts: {last_exception}")


class RetryPolicy:
    """
    Bounded retry with configurable backoff.

    Non-retryable exceptions propagate immediately. When all
    ``max_attempts`` fail, ``RetryExhaustedError`` wraps the last failure.
    ``sleep`` is injectable so tests do not wait on real delays.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 30.0,
        backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER,
        jitter_factor: float = 0.5,
        retryable_exceptions: tuple = (Exception,),
        non_retryable_exceptions: tuple = (),
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.backoff_strategy = backoff_strategy
        self.jitter_factor = jitter_factor
        self.retryable_exceptions = retryable_exceptions
        self.non_retryable_exceptions = non_retryable_exceptions
        self._on_retry = on_retry
        self._sleep = sleep
        self._metrics = RetryMetrics()
        self._lock = threading.Lock()

    @property
    def metrics(self) -> RetryMetrics:
        with self._lock:
            return RetryMetrics(**self._metrics.__dict__)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        base = self.base_delay_seconds
        if self.backoff_strategy == BackoffStrategy.FIXED:
            delay = base
        elif self.backoff_strategy == BackoffStrategy.LINEAR:
            delay = base * attempt
        elif self.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = base * (2 ** (attempt - 1))
        else:
            exp_delay = base * (2 ** (attempt - 1))
            delay = exp_delay + random.uniform(0, self.jitter_factor * exp_delay)
        return min(delay, self.max_delay_seconds)

    def _is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, self.non_retryable_exceptions):
            return False
        return isinstance(exc, self.retryable_exceptions)

    def execute(self, func: Callable[[], T]) -> T:
        last_exception: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            with self._lock:
                self._metrics.total_attempts += 1
            try:
                result = func()
            except Exception as e:
                last_exception = e
                with self._lock:
                    self._metrics.failed_attempts += 1
                if not self._is_retryable(e):
                    raise
                if attempt < self.max_attempts:
                    delay = self.delay_for(attempt)
                    with self._lock:
                        self._metrics.total_retry_delay_seconds += delay
                    if self._on_retry:
                        self._on_retry(attempt, e, delay)
                    self._sleep(delay)
                continue
            with self._lock:
                self._metrics.successful_attempts += 1
            return result

        with self._lock:
            self._metrics.retries_exhausted += 1
        raise RetryExhaustedError(self.max_attempts, last_exception)

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return self.execute(lambda: func(*args, **kwargs))
        return wrapper


# ════════════════════════════════════════════════════════════════════════════
# TIMEOUT
# ════════════════════════════════════════════════════════════════════════════


class TimeoutExceeded(Exception):
    """Raised when a collaborator call does not return in time."""
    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Operation '{operation}' timed out after {timeout_seconds}s")


@dataclass
class TimeoutMetrics:
    total_calls: int = 0
    successful_calls: int = 0
    timed_out_calls: int = 0
    total_duration_seconds: float = 0.0


class Timeout:
    """
    Bounded wait on a collaborator call.

    The call runs on a worker thread; the caller waits at most ``seconds``.
    A call that overruns is abandoned (Python threads cannot be killed) and
    its eventual result is discarded. Exceptions raised by the call are
    re-raised unchanged.
    """

    def __init__(self, seconds: float, name: str = "operation"):
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        self.seconds = seconds
        self.name = name
        self._metrics = TimeoutMetrics()
        self._lock = threading.Lock()

    @property
    def metrics(self) -> TimeoutMetrics:
        with self._lock:
            return TimeoutMetrics(**self._metrics.__dict__)

    def execute(self, func: Callable[[], T]) -> T:
        with self._lock:
            self._metrics.total_calls += 1
        start = time.monotonic()

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"timeout-{self.name}"
        )
        try:
            future = executor.submit(func)
            try:
                result = future.result(timeout=self.seconds)
            except concurrent.futures.TimeoutError:
                with self._lock:
                    self._metrics.timed_out_calls += 1
                raise TimeoutExceeded(self.name, self.seconds) from None
        finally:
            executor.shutdown(wait=False)

        with self._lock:
            self._metrics.successful_calls += 1
            self._metrics.total_duration_seconds += time.monotonic() - start
        return result

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return self.execute(lambda: func(*args, **kwargs))
        return wrapper
