"""In-process circuit breaker for outbound wger API calls.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - One breaker instance guards one destination. Instances are never shared
    between independently configured clients.
  - ``HALF_OPEN`` admits exactly one probe. Its outcome closes the circuit
    (success) or reopens it and restarts the reset timeout (failure).
  - Time comes from an injected ``Clock`` so the ``OPEN`` -> ``HALF_OPEN``
    transition can be driven deterministically in tests.
"""

from wger_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from wger_core.circuit_breaker.exceptions import CircuitOpenError
from wger_core.circuit_breaker.metrics import BreakerListener, LoggingBreakerListener
from wger_core.circuit_breaker.state import BreakerStats, CircuitState

__all__ = [
    "BreakerListener",
    "BreakerStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "LoggingBreakerListener",
]
