"""Administrative connectivity check against a candidate wger server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from wger_core.logging import REDACTED, StructuredLogger, get_logger, log_info, log_warning
from wger_core.schemas import Endpoints
from wger_core.settings import ClientSettings, build_auth_headers
from wger_core.url_validator import UrlValidationResult, UrlValidator

_AUTH_TYPES = frozenset({"none", "token", "jwt"})


@dataclass(frozen=True, slots=True)
class ConnectionTestResult:
    """Structured outcome returned to the caller instead of raising."""

    success: bool
    message: str
    status: int | None = None
    validation: UrlValidationResult | None = None
    data: Any = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": self.success, "message": self.message}
        if self.status is not None:
            payload["status"] = self.status
        if self.validation is not None:
            payload["validation"] = self.validation.to_dict()
        if self.data is not None:
            payload["data"] = self.data
        return payload


def _scrub(message: str, settings: ClientSettings) -> str:
    if settings.api_token is None:
        return message
    secret = settings.api_token.get_secret_value()
    if not secret:
        return message
    return message.replace(secret, REDACTED)


def _same_origin(left: str, right: str) -> bool:
    a, b = httpx.URL(left), httpx.URL(right)
    return (a.scheme, a.host, a.port) == (b.scheme, b.host, b.port)


async def test_connection(
    candidate_url: str | None,
    auth_type: str | None,
    *,
    settings: ClientSettings,
    http_client: httpx.AsyncClient,
    validator: UrlValidator | None = None,
    logger: StructuredLogger | None = None,
) -> ConnectionTestResult:
    """Validate ``candidate_url`` and probe its info endpoint.

    The candidate goes through the same URL validation as configured servers
    before any request is made. Credentials come only from ``settings`` and are
    attached only when the candidate has the configured server's origin.
    This coroutine never raises; every failure becomes an unsuccessful result.
    """
    log = get_logger(__name__) if logger is None else logger
    url = settings.api_url if candidate_url is None else candidate_url
    mode = (settings.auth_type if auth_type is None else auth_type).strip().lower()
    if mode not in _AUTH_TYPES:
        return ConnectionTestResult(
            success=False, message=f"Unsupported auth type: {mode}"
        )

    url_validator = settings.url_validator() if validator is None else validator
    try:
        if settings.resolve_dns:
            validation = await url_validator.validate_resolved(
                url, is_development=settings.is_development
            )
        else:
            validation = url_validator.validate(
                url, is_development=settings.is_development
            )
    except Exception as exc:
        message = _scrub(
            f"URL validation failed: {exc.__class__.__name__}: {exc}", settings
        )
        log_warning(log, "connection_test.rejected", errors=[message])
        return ConnectionTestResult(success=False, message=message)

    if not validation.valid or validation.normalized_url is None:
        log_warning(
            log,
            "connection_test.rejected",
            errors=list(validation.errors),
        )
        return ConnectionTestResult(
            success=False,
            message=f"URL validation failed: {'; '.join(validation.errors)}",
            validation=validation,
        )

    base_url = validation.normalized_url.rstrip("/")
    headers = {"Accept": "application/json"}
    try:
        if _same_origin(base_url, settings.api_url):
            headers.update(build_auth_headers(mode, settings.api_token))
        response = await http_client.get(
            f"{base_url}{Endpoints.INFO}",
            headers=headers,
            timeout=settings.request_timeout_ms / 1000.0,
        )
    except httpx.TimeoutException:
        message = f"Connection timed out after {settings.request_timeout_ms}ms"
        log_warning(log, "connection_test.failed", reason="timeout")
        return ConnectionTestResult(
            success=False, message=message, validation=validation
        )
    except Exception as exc:
        message = _scrub(f"Connection failed: {exc}", settings)
        log_warning(
            log, "connection_test.failed", reason=type(exc).__name__, error=message
        )
        return ConnectionTestResult(
            success=False, message=message, validation=validation
        )

    if response.is_success:
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None
        log_info(log, "connection_test.succeeded", status=response.status_code)
        return ConnectionTestResult(
            success=True,
            message="Connection successful",
            status=response.status_code,
            validation=validation,
            data=data,
        )

    message = _scrub(
        response.reason_phrase or f"HTTP {response.status_code}", settings
    )
    log_warning(
        log, "connection_test.failed", reason="http_status", status=response.status_code
    )
    return ConnectionTestResult(
        success=False,
        message=message,
        status=response.status_code,
        validation=validation,
    )
