"""Resilient HTTP client for the wger REST API."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import RetryCallState

from wger_core.circuit_breaker import CircuitBreaker, CircuitOpenError
from wger_core.errors import (
    HttpResponseError,
    InputValidationError,
    NetworkError,
    RequestSetupError,
    RequestTimeoutError,
    WgerError,
)
from wger_core.input_validator import PATTERNS
from wger_core.logging import StructuredLogger, get_logger, log_error, log_info, log_warning
from wger_core.retry import RetryPolicy, build_retrying

AuthHeaderProvider = Callable[[], Mapping[str, str]]

MAX_PARAM_LENGTH = 1000
NO_RESPONSE_MESSAGE = "No response received from server"
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _no_auth() -> Mapping[str, str]:
    return {}


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _http_response_error(response: httpx.Response) -> HttpResponseError:
    data = _decode_body(response)
    detail = data.get("detail") if isinstance(data, dict) else None
    if isinstance(detail, str) and detail:
        message = detail
    else:
        message = f"{response.status_code} {response.reason_phrase}".strip()
    return HttpResponseError(message, status=response.status_code, data=data)


class ResilientClient:
    """Issue wger API calls behind an optional circuit breaker and retry policy.

    This is the only place raw transport failures are classified. Every failure
    leaves ``request`` as a ``WgerError`` subclass.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        *,
        auth_headers: AuthHeaderProvider | None = None,
        retry_policy: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        timeout_ms: float = 5000.0,
        max_param_length: int = MAX_PARAM_LENGTH,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Create a client.

        Args:
            http_client: Shared async HTTP transport.
            base_url: Validated, normalized API base URL.
            auth_headers: Called before each attempt for auth headers.
            retry_policy: Enables retries when given.
            circuit_breaker: Gates every attempt when given. It must not be
                shared with a client for a different destination.
            timeout_ms: Per-attempt transport deadline.
            max_param_length: Longest accepted parameter value.
            logger: Structured logger for request events.
        """
        self._http = http_client
        self.base_url = base_url.rstrip("/")
        self._auth_headers = _no_auth if auth_headers is None else auth_headers
        self.retry_policy = retry_policy
        self.circuit_breaker = circuit_breaker
        self._timeout_s = timeout_ms / 1000.0
        self._timeout_ms = timeout_ms
        self._max_param_length = max_param_length
        self._logger = get_logger(__name__) if logger is None else logger

    async def get(self, endpoint: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        data: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self.request("POST", endpoint, data=data, params=params)

    async def put(
        self,
        endpoint: str,
        data: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self.request("PUT", endpoint, data=data, params=params)

    async def patch(
        self,
        endpoint: str,
        data: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self.request("PATCH", endpoint, data=data, params=params)

    async def delete(
        self, endpoint: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        return await self.request("DELETE", endpoint, params=params)

    async def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Issue one logical request and return the decoded response body.

        ``{name}`` placeholders in ``endpoint`` are filled from ``params``;
        the remaining params are sent as the query string.

        Raises:
            InputValidationError: Path traversal or oversized parameters.
            CircuitOpenError: The breaker rejected an attempt.
            WgerError: The classified failure of the final attempt.
        """
        path, query = self._build_path(endpoint, params)
        url = f"{self.base_url}{path}"

        if self.retry_policy is None:
            try:
                return await self._attempt(method, url, data, query)
            except CircuitOpenError:
                raise
            except WgerError as exc:
                self._log_failure(method, path, exc, attempts=1)
                raise

        retrying = build_retrying(
            self.retry_policy,
            before_sleep=self._build_retry_logger(method, path),
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return await self._attempt(method, url, data, query)
        except CircuitOpenError:
            raise
        except WgerError as exc:
            if attempts > 1:
                exc.annotate_attempts(attempts)
            self._log_failure(method, path, exc, attempts=attempts)
            raise

        raise RuntimeError("Request retry loop exited unexpectedly.")

    def _build_path(
        self, endpoint: str, params: Mapping[str, Any] | None
    ) -> tuple[str, dict[str, Any]]:
        if PATTERNS["PATH_TRAVERSAL"].search(endpoint):
            raise InputValidationError(
                "Endpoint contains invalid path traversal patterns"
            )

        remaining = {
            key: value for key, value in (params or {}).items() if value is not None
        }
        for key, value in remaining.items():
            if len(str(value)) > self._max_param_length:
                raise InputValidationError(
                    f"Parameter '{key}' exceeds maximum length of "
                    f"{self._max_param_length} characters"
                )

        def _substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in remaining:
                raise RequestSetupError(f"Missing value for path parameter '{name}'")
            value = str(remaining.pop(name))
            if PATTERNS["PATH_TRAVERSAL"].search(value):
                raise InputValidationError(
                    f"Path parameter '{name}' contains invalid path traversal patterns"
                )
            return quote(value, safe="")

        path = _PLACEHOLDER.sub(_substitute, endpoint)
        return path, remaining

    async def _attempt(
        self, method: str, url: str, data: Any, query: Mapping[str, Any]
    ) -> Any:
        breaker = self.circuit_breaker
        if breaker is not None and not breaker.can_execute():
            log_warning(
                self._logger,
                "request.circuit_open",
                breaker=breaker.name,
                method=method,
            )
            raise breaker.reject()

        try:
            result = await self._send(method, url, data, query)
        except WgerError:
            if breaker is not None:
                breaker.on_failure()
            raise
        except BaseException:
            if breaker is not None:
                breaker.release_probe()
            raise
        if breaker is not None:
            breaker.on_success()
        return result

    async def _send(
        self, method: str, url: str, data: Any, query: Mapping[str, Any]
    ) -> Any:
        try:
            headers = {"Accept": "application/json", **self._auth_headers()}
            response = await self._http.request(
                method,
                url,
                json=data if method != "GET" and data is not None else None,
                params=dict(query) or None,
                headers=headers,
                timeout=self._timeout_s,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _http_response_error(exc.response) from exc
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                f"Request timed out after {self._timeout_ms:g}ms",
                code=type(exc).__name__,
            ) from exc
        except httpx.UnsupportedProtocol as exc:
            raise RequestSetupError(str(exc), code=type(exc).__name__) from exc
        except httpx.RequestError as exc:
            raise NetworkError(NO_RESPONSE_MESSAGE, code=type(exc).__name__) from exc
        except Exception as exc:
            raise RequestSetupError(
                str(exc) or type(exc).__name__, code=type(exc).__name__
            ) from exc
        return _decode_body(response)

    def _build_retry_logger(
        self, method: str, path: str
    ) -> Callable[[RetryCallState], None]:
        def _log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = outcome.exception() if outcome is not None else None
            delay_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log_info(
                self._logger,
                "request.retry_scheduled",
                method=method,
                path=path,
                attempt=retry_state.attempt_number,
                delay_ms=round(delay_s * 1000),
                error_kind=str(getattr(error, "kind", type(error).__name__)),
                error=str(error),
            )

        return _log_retry

    def _log_failure(
        self, method: str, path: str, exc: WgerError, *, attempts: int
    ) -> None:
        log_error(
            self._logger,
            "request.failed",
            method=method,
            path=path,
            error_kind=str(exc.kind),
            status=exc.status,
            attempts=attempts,
            error=exc.message,
        )
