from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Literal

import httpx
from pydantic import SecretStr, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wger_core.circuit_breaker import (
    BreakerListener,
    CircuitBreaker,
    CircuitBreakerConfig,
    LoggingBreakerListener,
)
from wger_core.client import ResilientClient
from wger_core.logging import StructuredLogger, configure_structlog, get_log_level_value
from wger_core.providers import Clock, RandomSource
from wger_core.retry import RetryPolicy
from wger_core.url_validator import UrlValidator, looks_like_test_endpoint

AuthType = Literal["none", "token", "jwt"]

_DECIMAL_INTEGER = re.compile(r"^[+-]?\d+$")


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


def parse_decimal_int(value: object, default: int) -> int:
    """Parse ``value`` as a base-10 integer, returning ``default`` on failure.

    ``"010"`` parses as 10. Hex, exponent and float-looking strings and
    booleans all fall back to ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else default
    if isinstance(value, str):
        candidate = value.strip()
        if _DECIMAL_INTEGER.match(candidate):
            return int(candidate, 10)
    return default


def build_auth_headers(auth_type: str, token: SecretStr | None) -> dict[str, str]:
    """Return the Authorization header for ``auth_type``, or nothing."""
    secret = token.get_secret_value() if token is not None else ""
    if not secret:
        return {}
    if auth_type == "token":
        return {"Authorization": f"Token {secret}"}
    if auth_type == "jwt":
        return {"Authorization": f"Bearer {secret}"}
    return {}


class ClientSettings(BaseSettings):
    """Connection and resilience settings for one wger server."""

    model_config = prefixed_settings_config("WGER_")

    api_url: str = "https://wger.de"
    auth_type: AuthType = "none"
    api_token: SecretStr | None = None
    is_development: bool = False
    allowed_domains: list[str] = ["wger.de"]
    resolve_dns: bool = True
    request_timeout_ms: int = 5000
    enable_retry: bool = True
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30_000
    enable_circuit_breaker: bool = True
    breaker_failure_threshold: int = 5
    breaker_reset_timeout_ms: int = 60_000
    log_level: str = "INFO"

    @field_validator("auth_type", mode="before")
    @classmethod
    def _normalize_auth_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level", mode="after")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.strip().upper()

    @field_validator(
        "request_timeout_ms",
        "retry_max_attempts",
        "retry_base_delay_ms",
        "retry_max_delay_ms",
        "breaker_failure_threshold",
        "breaker_reset_timeout_ms",
        mode="before",
    )
    @classmethod
    def _parse_decimal_field(cls, value: object, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        return parse_decimal_int(value, default)

    @model_validator(mode="after")
    def _validate_client_settings(self) -> ClientSettings:
        if self.request_timeout_ms <= 0:
            raise ValueError("request_timeout_ms must be > 0")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be >= 1")
        if self.retry_base_delay_ms < 0:
            raise ValueError("retry_base_delay_ms must be >= 0")
        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError("retry_max_delay_ms must be >= retry_base_delay_ms")
        if self.breaker_failure_threshold < 1:
            raise ValueError("breaker_failure_threshold must be >= 1")
        if self.breaker_reset_timeout_ms < 0:
            raise ValueError("breaker_reset_timeout_ms must be >= 0")

        result = self.url_validator().validate(
            self.api_url, is_development=self.is_development
        )
        if not result.valid or result.normalized_url is None:
            raise ValueError(f"api_url rejected: {'; '.join(result.errors)}")
        self.api_url = result.normalized_url.rstrip("/")
        return self

    @property
    def looks_like_test_endpoint(self) -> bool:
        """Return the display-only test endpoint hint for ``api_url``."""
        return looks_like_test_endpoint(self.api_url)

    def auth_headers(self) -> dict[str, str]:
        """Build the Authorization header from the stored credential."""
        return build_auth_headers(self.auth_type, self.api_token)

    def configure_logging(self) -> StructuredLogger:
        return configure_structlog(log_level=self.log_level)

    def url_validator(self) -> UrlValidator:
        return UrlValidator(allowed_domains=self.allowed_domains)

    def retry_policy(
        self, *, random_source: RandomSource | None = None
    ) -> RetryPolicy | None:
        if not self.enable_retry:
            return None
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            random_source=random_source,
        )

    def circuit_breaker(
        self,
        *,
        clock: Clock | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> CircuitBreaker | None:
        if not self.enable_circuit_breaker:
            return None
        return CircuitBreaker(
            httpx.URL(self.api_url).host or self.api_url,
            config=CircuitBreakerConfig(
                failure_threshold=self.breaker_failure_threshold,
                reset_timeout_ms=self.breaker_reset_timeout_ms,
            ),
            clock=clock,
            listeners=[LoggingBreakerListener()] if listeners is None else listeners,
        )

    def build_client(
        self,
        http_client: httpx.AsyncClient,
        *,
        logger: StructuredLogger | None = None,
    ) -> ResilientClient:
        """Build a client wired to this server's URL, credential and resilience."""
        return ResilientClient(
            http_client,
            self.api_url,
            auth_headers=self.auth_headers,
            retry_policy=self.retry_policy(),
            circuit_breaker=self.circuit_breaker(),
            timeout_ms=self.request_timeout_ms,
            logger=logger,
        )
