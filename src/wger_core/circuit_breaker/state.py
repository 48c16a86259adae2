"""Circuit breaker state primitives."""

from dataclasses import dataclass
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerStats:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name, usually the destination it guards.
        state: Current breaker state.
        failure_count: Failures counted since the last success or reset.
        failure_threshold: Failures required while ``CLOSED`` before opening.
        last_failure_time: Clock reading (ms) of the last failure, if any.
        next_attempt_at: Clock reading (ms) when a probe becomes allowed, if open.
    """

    name: str
    state: CircuitState
    failure_count: int
    failure_threshold: int
    last_failure_time: float | None
    next_attempt_at: float | None
