"""Structured logging for wger_core.

Events go through structlog, or through a plain stdlib logger when a host
application passes one in. Every configured event passes
``redact_credentials`` first, so wger API tokens never reach a log sink.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping
from typing import Literal, Protocol

import structlog
from structlog.typing import EventDict

REDACTED = "***"

_LEVELS: dict[str, int] = {
    name: value
    for name, value in logging.getLevelNamesMapping().items()
    if name in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
}
_SENSITIVE_KEY_PARTS = ("authorization", "token", "secret", "password")
# Header values as wger expects them: "Token <key>" or "Bearer <jwt>".
_CREDENTIAL_IN_TEXT = re.compile(r"\b(Token|Bearer)\s+[^\s,;'\"]+")

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]
Level = Literal["info", "warning", "error"]


class StructuredLogger(Protocol):
    """Logger accepting an event name plus keyword fields."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def error(self, event: str, **kwargs: object) -> None: ...


def get_log_level_value(level: str) -> int:
    """Map a level name such as ``"info"`` to its stdlib constant."""
    try:
        return _LEVELS[level.strip().upper()]
    except KeyError as error:
        raise ValueError(
            f"log_level must be one of: {', '.join(sorted(_LEVELS))}"
        ) from error


def _is_sensitive_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def _redact(value: object) -> object:
    if isinstance(value, str):
        return _CREDENTIAL_IN_TEXT.sub(rf"\1 {REDACTED}", value)
    if isinstance(value, Mapping):
        return {
            key: REDACTED if _is_sensitive_key(key) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(item) for item in value)
    return value


def redact_credentials(_: object, __: str, event_dict: EventDict) -> EventDict:
    """Mask credential fields and ``Token``/``Bearer`` values in an event.

    Fields whose name mentions authorization, token, secret or password are
    replaced outright; other strings, mappings and sequences are scanned.
    """
    for key, value in list(event_dict.items()):
        event_dict[key] = REDACTED if _is_sensitive_key(key) else _redact(value)
    return event_dict


def _emit(
    logger: StructuredLogger | _StdlibLogger,
    level: Level,
    event: str,
    fields: dict[str, object],
) -> None:
    method = getattr(logger, level)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        method(event, extra=fields)
    else:
        method(event, **fields)


def log_info(logger: StructuredLogger | _StdlibLogger, event: str, **fields: object) -> None:
    _emit(logger, "info", event, fields)


def log_warning(
    logger: StructuredLogger | _StdlibLogger, event: str, **fields: object
) -> None:
    _emit(logger, "warning", event, fields)


def log_error(logger: StructuredLogger | _StdlibLogger, event: str, **fields: object) -> None:
    _emit(logger, "error", event, fields)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return structlog.stdlib.get_logger(name)


def configure_structlog(*, log_level: str) -> structlog.stdlib.BoundLogger:
    """Route wger_core events through stdlib logging on stderr.

    Output is console-formatted on a terminal and JSON otherwise. Calling this
    again replaces the previous handler.
    """
    level_value = get_log_level_value(log_level)
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_log_level,
                timestamper,
                redact_credentials,
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(
        format="%(message)s", handlers=[handler], level=level_value, force=True
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_credentials,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger("wger_core")
