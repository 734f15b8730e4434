"""
Resilience layer for external capabilities (embedding provider, learning predictor).
Circuit breaking, bounded retries with jittered backoff, and per-call timeouts.
"""

import asyncio
import inspect
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import pybreaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from .config import ResilienceConfig
from .errors import InvalidQuery, ProviderError, ProviderErrorKind, ProviderUnavailable
from ..util.logging import logger

Operation = Callable[[], Awaitable[Any]]
Fallback = Callable[[ProviderUnavailable], Any]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of a breaker, safe to hand to callers."""
    capability: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: Optional[float]
    opened_until: Optional[float]


def is_transient(error: BaseException) -> bool:
    """Whether an error is worth retrying (timeouts, outages, rate limits)."""
    if isinstance(error, ProviderError):
        return error.transient
    return isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError))


def counts_as_failure(error: BaseException) -> bool:
    """Client-side errors say nothing about provider health."""
    if isinstance(error, InvalidQuery):
        return False
    if isinstance(error, ProviderError) and error.kind == ProviderErrorKind.INVALID_INPUT:
        return False
    return True


class _TransitionLogger(pybreaker.CircuitBreakerListener):
    """Logs every state change of the wrapped pybreaker breaker."""

    def __init__(self, capability: str):
        self.capability = capability
        self.details: Optional[dict] = None

    def state_change(self, cb, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", None)
        new_name = getattr(new_state, "name", None)
        if old_name != new_name:
            logger.log_circuit_transition(self.capability, old_name, new_name, self.details)
        self.details = None


class CircuitBreaker:
    """
    Per-capability circuit breaker built on pybreaker.

    closed -> open after `failure_threshold` consecutive failures (a gap longer
    than `failure_window` between failures restarts the count); open -> half-open
    once `reset_timeout` has elapsed, letting exactly one trial call through;
    the trial outcome decides between closed and a fresh open period.

    pybreaker holds the state and the failure counter. Outcomes are recorded
    explicitly and the open period is measured with the injected clock, so the
    async call path never goes through pybreaker.call().
    """

    def __init__(self, capability: str, failure_threshold: int = 5, reset_timeout: float = 60.0,
                 failure_window: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1: {failure_threshold}")
        self.capability = capability
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failure_window = failure_window
        self._clock = clock
        self._lock = threading.RLock()

        self._listener = _TransitionLogger(capability)
        self._storage = pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
        self._breaker = pybreaker.CircuitBreaker(
            fail_max=failure_threshold,
            reset_timeout=reset_timeout,
            state_storage=self._storage,
            listeners=[self._listener],
            name=capability,
        )

        self._last_failure_at: Optional[float] = None
        self._opened_until: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return CircuitState(self._breaker.current_state)

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(
                capability=self.capability,
                state=CircuitState(self._breaker.current_state),
                consecutive_failures=self._breaker.fail_counter,
                last_failure_at=self._last_failure_at,
                opened_until=self._opened_until,
            )

    def allows_requests(self) -> bool:
        """True when a call would currently reach the operation (closed, or a trial is due)."""
        with self._lock:
            state = self._breaker.current_state
            if state == pybreaker.STATE_CLOSED:
                return True
            if state == pybreaker.STATE_OPEN:
                return self._clock() >= self._opened_until
            return not self._trial_in_flight

    def try_acquire(self) -> bool:
        """Reserve the right to call the operation. False means use the fallback."""
        with self._lock:
            state = self._breaker.current_state
            if state == pybreaker.STATE_CLOSED:
                return True

            if state == pybreaker.STATE_OPEN:
                if self._clock() < self._opened_until:
                    return False
                self._breaker.half_open()

            # half-open: a single trial call at a time
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def release(self) -> None:
        """Give back a trial slot without judging the provider."""
        with self._lock:
            self._trial_in_flight = False

    def record_success(self) -> None:
        with self._lock:
            self._trial_in_flight = False
            self._opened_until = None
            if self._breaker.current_state == pybreaker.STATE_CLOSED:
                self._storage.reset_counter()
            else:
                # closing resets pybreaker's counter
                self._breaker.close()

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            state = self._breaker.current_state
            if state == pybreaker.STATE_HALF_OPEN:
                self._trial_in_flight = False
                self._last_failure_at = now
                self._open(now)
                return

            if (self.failure_window is not None and self._last_failure_at is not None
                    and now - self._last_failure_at > self.failure_window):
                self._storage.reset_counter()

            self._storage.increment_counter()
            self._last_failure_at = now
            if state == pybreaker.STATE_CLOSED and self._breaker.fail_counter >= self._breaker.fail_max:
                self._open(now)

    def _open(self, now: float) -> None:
        self._opened_until = now + self.reset_timeout
        self._listener.details = {
            "consecutive_failures": self._breaker.fail_counter,
            "reset_timeout": self.reset_timeout,
        }
        self._breaker.open()

    def reset(self) -> None:
        """Force the breaker back to closed (operator action, tests)."""
        with self._lock:
            self._last_failure_at = None
            self._opened_until = None
            self._trial_in_flight = False
            self._breaker.close()
            self._storage.reset_counter()

    async def execute(self, operation: Operation, fallback: Optional[Fallback] = None) -> Any:
        """
        Run `operation` under the breaker.

        While open, `fallback` is invoked without touching the operation. A
        failure is recorded and then handed to `fallback`; without a fallback
        the caller receives ProviderUnavailable. A call cancelled from outside
        (an enclosing deadline) is recorded as a failure and the cancellation
        propagates. Client-side errors (invalid input) propagate unchanged and
        leave the provider's record untouched.
        """
        if not self.try_acquire():
            return await _invoke_fallback(
                fallback, ProviderUnavailable(self.capability, "circuit open")
            )

        try:
            result = await operation()
        except asyncio.CancelledError:
            self.record_failure()
            raise
        except Exception as e:
            if not counts_as_failure(e):
                self.release()
                raise
            self.record_failure()
            unavailable = e if isinstance(e, ProviderUnavailable) else ProviderUnavailable(
                self.capability, describe_error(e), cause=e
            )
            return await _invoke_fallback(fallback, unavailable)
        except BaseException:
            self.release()
            raise

        self.record_success()
        return result


async def _invoke_fallback(fallback: Optional[Fallback], error: ProviderUnavailable) -> Any:
    if fallback is None:
        raise error
    result = fallback(error)
    if inspect.isawaitable(result):
        result = await result
    return result


def describe_error(error: BaseException) -> str:
    """Short, never-empty reason for logs and ProviderUnavailable."""
    if isinstance(error, ProviderError):
        return f"{error.kind.value}: {error}"
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class ResilienceLayer:
    """
    Timeout + retry + circuit breaker around one guarded capability.

    Each attempt is bounded by `timeout`; transient failures are retried
    `config.retry_attempts` times with full-jitter exponential backoff before
    the breaker records a single failure for the whole call. `budget`, when
    set, bounds the whole call including retries and backoff.
    """

    def __init__(self, capability: str, config: ResilienceConfig, timeout: float,
                 budget: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.capability = capability
        self.config = config
        self.timeout = timeout
        self.budget = budget
        self.breaker = CircuitBreaker(
            capability,
            failure_threshold=config.failure_threshold,
            reset_timeout=config.reset_timeout,
            failure_window=config.failure_window,
            clock=clock,
        )

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is not None and outcome.exception() is not None:
            logger.log_provider_failure(self.capability, outcome.exception(), attempt=retry_state.attempt_number)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts + 1),
            wait=wait_random_exponential(
                multiplier=self.config.retry_base_delay,
                max=self.config.retry_max_delay,
            ),
            retry=retry_if_exception(is_transient),
            before_sleep=self._before_sleep,
            # Re-raise original exception on final failure (don't wrap in RetryError)
            reraise=True,
        )

    async def _attempt(self, operation: Operation) -> Any:
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProviderError(
                f"{self.capability} call exceeded {self.timeout}s", ProviderErrorKind.TIMEOUT
            )

    async def _with_retry(self, operation: Operation) -> Any:
        result = None
        async for attempt in self._retrying():
            with attempt:
                result = await self._attempt(operation)
        return result

    async def _within_budget(self, operation: Operation, budget: Optional[float]) -> Any:
        if budget is None:
            return await self._with_retry(operation)
        try:
            return await asyncio.wait_for(self._with_retry(operation), timeout=max(budget, 0.0))
        except asyncio.TimeoutError:
            raise ProviderError(
                f"{self.capability} call exceeded its {budget:.3f}s budget", ProviderErrorKind.TIMEOUT
            )

    async def execute(self, operation: Operation, fallback: Optional[Fallback] = None,
                      budget: Optional[float] = None) -> Any:
        """Guarded call; `budget` overrides the layer's default for this call only."""
        if budget is None:
            budget = self.budget
        return await self.breaker.execute(lambda: self._within_budget(operation, budget), fallback)

    @property
    def healthy(self) -> bool:
        return self.breaker.allows_requests()

    def snapshot(self) -> CircuitSnapshot:
        return self.breaker.snapshot()
