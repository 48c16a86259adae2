"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open, without any network
    attempt having been made.
"""

from wger_core.circuit_breaker.state import CircuitState
from wger_core.errors import ErrorKind, WgerError


class CircuitOpenError(WgerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        state: Breaker state at rejection time.
        retry_after_ms: Milliseconds until a half-open probe may be attempted.
    """

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(
        self,
        breaker_name: str,
        *,
        state: CircuitState,
        retry_after_ms: float,
    ) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            state: Breaker state at rejection time.
            retry_after_ms: Milliseconds until the next probe window opens.
        """
        self.breaker_name = breaker_name
        self.state = state
        self.retry_after_ms = retry_after_ms
        super().__init__(
            "Circuit breaker is open - too many recent failures "
            f"({breaker_name}, retry after {retry_after_ms:g}ms)"
        )
