"""Shared error types for wger_core.

Every failure surfaced to callers is a ``WgerError`` carrying a stable ``kind``
so that callers can branch on the category without ``isinstance`` chains.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Error categories surfaced to operation callers."""

    VALIDATION = "ValidationError"
    HTTP_RESPONSE = "HttpResponseError"
    NETWORK = "NetworkError"
    TIMEOUT = "TimeoutError"
    REQUEST_SETUP = "RequestSetupError"
    CIRCUIT_OPEN = "CircuitOpenError"


class WgerError(RuntimeError):
    """Base exception for classified wger request failures."""

    kind: ErrorKind = ErrorKind.REQUEST_SETUP

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        data: object | None = None,
        code: str | None = None,
        attempt_count: int | None = None,
    ) -> None:
        """Initialize error metadata.

        Args:
            message: Human-readable error message.
            status: HTTP status observed from the API, if any.
            data: Decoded response body, if any.
            code: Low-level transport error code, if any.
            attempt_count: Number of attempts made before giving up.
        """
        super().__init__(message)
        self.message = message
        self.status = status
        self.data = data
        self.code = code
        self.attempt_count = attempt_count

    def __str__(self) -> str:
        return self.message

    def annotate_attempts(self, attempts: int) -> None:
        """Record the final attempt count and append it to the message once."""
        if self.attempt_count is not None:
            return
        self.attempt_count = attempts
        self.message = f"{self.message} (failed after {attempts} attempts)"
        self.args = (self.message,)

    def to_dict(self) -> dict[str, object]:
        """Return the structured error payload returned to collaborators."""
        payload: dict[str, object] = {"message": self.message, "kind": str(self.kind)}
        if self.status is not None:
            payload["status"] = self.status
        if self.data is not None:
            payload["data"] = self.data
        if self.code is not None:
            payload["code"] = self.code
        if self.attempt_count is not None:
            payload["attemptCount"] = self.attempt_count
        return payload


class InputValidationError(WgerError):
    """Raised when a payload or URL fails schema or security checks."""

    kind = ErrorKind.VALIDATION


class HttpResponseError(WgerError):
    """Raised when the API answered with a non-success status."""

    kind = ErrorKind.HTTP_RESPONSE


class NetworkError(WgerError):
    """Raised when no response was received from the API."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(WgerError):
    """Raised when the transport deadline expired."""

    kind = ErrorKind.TIMEOUT


class RequestSetupError(WgerError):
    """Raised for local misconfiguration or any unclassified failure."""

    kind = ErrorKind.REQUEST_SETUP


class InvalidOperationError(RequestSetupError):
    """Raised when an operation name has no registered handler."""


class ProviderCapabilityError(TypeError):
    """Raised when an injected provider lacks a required capability."""
