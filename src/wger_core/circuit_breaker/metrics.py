"""Observability hooks for circuit breakers."""

from __future__ import annotations

from typing import Protocol

import structlog

from wger_core.circuit_breaker.state import CircuitState
from wger_core.logging import StructuredLogger, log_info, log_warning


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Transitions are reported synchronously from inside ``on_success``,
        ``on_failure`` and ``can_execute``; listeners must not block.
    """

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        """Handle circuit state transitions."""

    def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""


class LoggingBreakerListener:
    """Emit breaker events as structured log records."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger = (
            structlog.stdlib.get_logger(__name__) if logger is None else logger
        )

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        if new == CircuitState.OPEN:
            log_warning(
                self._logger,
                "circuit_breaker.state_change",
                breaker=name,
                old=str(old),
                new=str(new),
            )
            return
        log_info(
            self._logger,
            "circuit_breaker.state_change",
            breaker=name,
            old=str(old),
            new=str(new),
        )

    def on_call_rejected(self, name: str) -> None:
        log_warning(self._logger, "circuit_breaker.call_rejected", breaker=name)
