"""Core circuit breaker implementation."""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import ParamSpec, TypeVar

from wger_core.circuit_breaker.exceptions import CircuitOpenError
from wger_core.circuit_breaker.metrics import BreakerListener
from wger_core.circuit_breaker.state import BreakerStats, CircuitState
from wger_core.providers import Clock, SystemClock, require_capabilities

T = TypeVar("T")
P = ParamSpec("P")

_CLOCK_CAPABILITIES = ("now", "call_later", "cancel")


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Failures required while ``CLOSED`` before opening.
        reset_timeout_ms: Milliseconds to stay ``OPEN`` after the last failure
            before a single probe is allowed.
    """

    failure_threshold: int = 5
    reset_timeout_ms: float = 60_000.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be >= 0")


class CircuitBreaker:
    """Failure-tracking gate for one logical destination.

    State changes happen only inside ``can_execute``, ``on_success``,
    ``on_failure``, ``reset`` and the reset timer callback. None of them awaits,
    so concurrent requests on one event loop see each transition atomically.
    """

    def __init__(
        self,
        name: str = "default",
        *,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Breaker name used in errors and log events.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            clock: Time source exposing ``now``, ``call_later`` and ``cancel``.
                Defaults to ``SystemClock()``.
            listeners: Optional listener hooks for breaker events.

        Raises:
            ProviderCapabilityError: When ``clock`` lacks a required method.
        """
        resolved_clock = SystemClock() if clock is None else clock
        require_capabilities(
            resolved_clock,
            component="CircuitBreaker",
            role="clock",
            capabilities=_CLOCK_CAPABILITIES,
        )
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._clock = resolved_clock
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._probe_in_flight = False
        self._reset_timer: object | None = None

    @property
    def state(self) -> CircuitState:
        """Return the current breaker state without triggering transitions."""
        return self._state

    def can_execute(self) -> bool:
        """Return whether a call may proceed right now.

        While ``OPEN`` this returns false until the reset timeout has elapsed
        since the last failure; the breaker then moves to ``HALF_OPEN`` and
        exactly one caller is granted the probe.
        """
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if not self._reset_timeout_elapsed():
                return False
            self._transition(CircuitState.HALF_OPEN)

        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def on_success(self) -> None:
        """Record a successful call."""
        if self._state == CircuitState.HALF_OPEN:
            self._failure_count = 0
            self._last_failure_time = None
            self._transition(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def on_failure(self) -> None:
        """Record a failed call, opening the circuit when warranted."""
        self._failure_count += 1
        self._last_failure_time = self._clock.now()

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)
        else:
            self._schedule_reset_timer()

    def release_probe(self) -> None:
        """Give up a granted probe without recording an outcome.

        Used when the probing call is cancelled before it finishes, so the next
        caller may probe instead.
        """
        if self._state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    def reset(self) -> None:
        """Return to a healthy ``CLOSED`` state with cleared counters."""
        self._failure_count = 0
        self._last_failure_time = None
        if self._state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def get_stats(self) -> BreakerStats:
        """Return a snapshot of breaker internals."""
        return BreakerStats(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            failure_threshold=self.config.failure_threshold,
            last_failure_time=self._last_failure_time,
            next_attempt_at=self._next_attempt_at(),
        )

    def create_circuit_open_error(self) -> CircuitOpenError:
        """Build the error raised when a call is rejected without an attempt."""
        next_attempt_at = self._next_attempt_at()
        retry_after_ms = 0.0
        if next_attempt_at is not None:
            retry_after_ms = max(next_attempt_at - self._clock.now(), 0.0)
        return CircuitOpenError(
            self.name,
            state=self._state,
            retry_after_ms=retry_after_ms,
        )

    def reject(self) -> CircuitOpenError:
        """Report a rejected call to listeners and return the error to raise."""
        self._emit_call_rejected()
        return self.create_circuit_open_error()

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Raises:
            CircuitOpenError: When the circuit rejects the call.
            Exception: The original exception from ``func`` after it has been
                recorded as a failure.
        """
        if not self.can_execute():
            raise self.reject()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.on_failure()
            raise
        except BaseException:
            self.release_probe()
            raise
        self.on_success()
        return result

    def _next_attempt_at(self) -> float | None:
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return None
        return self._last_failure_time + self.config.reset_timeout_ms

    def _reset_timeout_elapsed(self) -> bool:
        next_attempt_at = self._next_attempt_at()
        return next_attempt_at is None or self._clock.now() >= next_attempt_at

    def _transition(self, new: CircuitState) -> None:
        old = self._state
        self._state = new
        if new != CircuitState.HALF_OPEN:
            self._probe_in_flight = False
        if new == CircuitState.OPEN:
            self._schedule_reset_timer()
        else:
            self._cancel_reset_timer()
        self._emit_state_change(old, new)

    def _schedule_reset_timer(self) -> None:
        self._cancel_reset_timer()
        self._reset_timer = self._clock.call_later(
            self.config.reset_timeout_ms, self._on_reset_timer
        )

    def _cancel_reset_timer(self) -> None:
        if self._reset_timer is not None:
            self._clock.cancel(self._reset_timer)
            self._reset_timer = None

    def _on_reset_timer(self) -> None:
        self._reset_timer = None
        if self._state == CircuitState.OPEN and self._reset_timeout_elapsed():
            self._transition(CircuitState.HALF_OPEN)

    def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        for listener in self._listeners:
            try:
                listener.on_state_change(self.name, old, new)
            except Exception:
                continue

    def _emit_call_rejected(self) -> None:
        for listener in self._listeners:
            try:
                listener.on_call_rejected(self.name)
            except Exception:
                continue
