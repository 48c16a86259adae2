"""Schema-driven validation and sanitization of operation payloads."""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Final
from urllib.parse import urlsplit

from wger_core.errors import InputValidationError
from wger_core.providers import DefaultSanitizer, Sanitizer, require_capabilities


class FieldType(StrEnum):
    """Field types understood by ``InputValidator``."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"
    EMAIL = "email"
    URL = "url"
    ARRAY = "array"
    OBJECT = "object"
    ID = "id"
    ENUM = "enum"


PATTERNS: Final[Mapping[str, re.Pattern[str]]] = {
    "ID": re.compile(r"^[a-zA-Z0-9_-]{1,100}$"),
    "ALPHANUMERIC": re.compile(r"^[a-zA-Z0-9]+$"),
    "USERNAME": re.compile(r"^[a-zA-Z0-9_-]{3,30}$"),
    "BARCODE": re.compile(r"^[0-9]{8,14}$"),
    "LANGUAGE_CODE": re.compile(r"^[a-z]{2}(-[A-Z]{2})?$"),
    "DATE": re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    "NUMERIC_LIST": re.compile(r"^(\d+,)*\d+$"),
    "PATH_TRAVERSAL": re.compile(
        r"\.\.[\\/]|[\\/]\.\.(?:[\\/]|$)|^\.\.$|%2e%2e|%252e%252e", re.IGNORECASE
    ),
}

_MISSING: Final = object()
_POLLUTING_KEYS = frozenset({"__proto__", "constructor", "prototype"})
_INTEGER_STRING = re.compile(r"^[+-]?\d+$")
_NUMBER_STRING = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_SQL_QUOTE_TERMINATOR = re.compile(r"';|\";")
_SQL_LINE_COMMENT = re.compile(r"--$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Validation rules for one payload field.

    ``min`` and ``max`` bound numbers, and bound array length when
    ``min_items``/``max_items`` are not given. ``pattern`` is either a key of
    ``PATTERNS`` or a compiled expression.
    """

    type: FieldType = FieldType.STRING
    required: bool = False
    default: Any = _MISSING
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    min_items: int | None = None
    max_items: int | None = None
    positive: bool = False
    pattern: str | re.Pattern[str] | None = None
    enum: tuple[Any, ...] | None = None
    items: FieldSpec | None = None
    sanitize: bool = True
    trim: bool = True
    validate: Callable[[Any, str], bool | str] | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING


@dataclass(frozen=True, slots=True)
class Schema:
    """Named field specs for one operation payload."""

    fields: Mapping[str, FieldSpec] = field(default_factory=dict)
    strict: bool = True


def _fmt(bound: float) -> str:
    if isinstance(bound, float) and bound.is_integer():
        return str(int(bound))
    return str(bound)


def _is_polluting_key(key: str) -> bool:
    return key in _POLLUTING_KEYS or (key.startswith("__") and key.endswith("__"))


def _fail(field_name: str, rule: str) -> InputValidationError:
    return InputValidationError(f"Field '{field_name}' {rule}")


def _check_traversal(value: str, field_name: str) -> None:
    if PATTERNS["PATH_TRAVERSAL"].search(value):
        raise _fail(field_name, "contains invalid path traversal patterns")


class InputValidator:
    """Validate and sanitize values against ``FieldSpec`` rules.

    The validator holds no per-call state. One instance may be shared by every
    operation; the only dependency is the sanitizer used for string fields.
    """

    TYPES = FieldType
    PATTERNS = PATTERNS

    def __init__(self, sanitizer: Sanitizer | None = None) -> None:
        resolved = DefaultSanitizer() if sanitizer is None else sanitizer
        require_capabilities(
            resolved,
            component="InputValidator",
            role="sanitizer",
            capabilities=("sanitize_markup", "normalize_email"),
        )
        self._sanitizer = resolved

    def validate_value(self, value: Any, spec: FieldSpec, field_name: str) -> Any:
        """Validate one value and return its coerced, sanitized form.

        Raises:
            InputValidationError: Naming the field and the violated rule.
        """
        result = self._validate_value(value, spec, field_name)
        return None if result is _MISSING else result

    def validate_payload(
        self,
        payload: Mapping[str, Any],
        schema: Schema | Mapping[str, FieldSpec],
        *,
        strict: bool | None = None,
    ) -> dict[str, Any]:
        """Validate a payload and return a new dict holding only schema fields.

        Keys such as ``__proto__`` or ``constructor`` are dropped silently and
        never reach the result or the unexpected-field check.
        """
        if not isinstance(payload, Mapping):
            raise InputValidationError("Payload must be an object")
        if not isinstance(schema, Schema):
            schema = Schema(fields=schema)
        strict = schema.strict if strict is None else strict

        own_fields = {
            str(key): value
            for key, value in payload.items()
            if not _is_polluting_key(str(key))
        }

        validated: dict[str, Any] = {}
        for name, spec in schema.fields.items():
            result = self._validate_value(own_fields.get(name), spec, name)
            if result is not _MISSING:
                validated[name] = result

        if strict:
            unexpected = [name for name in own_fields if name not in schema.fields]
            if unexpected:
                raise InputValidationError(
                    f"Unexpected fields in payload: {', '.join(unexpected)}"
                )
        return validated

    def create_validator(
        self, schemas: Mapping[str, Schema | Mapping[str, FieldSpec]]
    ) -> Callable[[str, Mapping[str, Any]], dict[str, Any]]:
        """Return an ``(operation, payload)`` validator over per-operation schemas.

        Operations without a schema get a shallow copy of their payload back.
        """

        def _validate(operation: str, payload: Mapping[str, Any]) -> dict[str, Any]:
            schema = schemas.get(operation)
            if schema is None:
                return dict(payload)
            try:
                return self.validate_payload(payload, schema)
            except InputValidationError as exc:
                raise InputValidationError(
                    f"Validation failed for operation '{operation}': {exc.message}"
                ) from exc

        return _validate

    def sanitize_string(self, value: str) -> str:
        """Strip markup, SQL comment tricks and NUL bytes from ``value``."""
        sanitized = self._sanitizer.sanitize_markup(value)
        sanitized = _SQL_QUOTE_TERMINATOR.sub(";", sanitized)
        sanitized = _SQL_LINE_COMMENT.sub("", sanitized)
        sanitized = _BLOCK_COMMENT.sub("", sanitized)
        return sanitized.replace("\x00", "")

    def _validate_value(self, value: Any, spec: FieldSpec, field_name: str) -> Any:
        if value is None:
            if spec.required:
                raise InputValidationError(
                    f"Required field '{field_name}' is missing or null"
                )
            return spec.default if spec.has_default else _MISSING

        coerced = self._coerce(value, spec.type, field_name)
        return self._apply_rules(coerced, spec, field_name)

    def _coerce(self, value: Any, field_type: FieldType, field_name: str) -> Any:
        if field_type == FieldType.STRING:
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (int, float)):
                value = str(value)
            elif not isinstance(value, str):
                raise _fail(
                    field_name, f"must be a string, got {type(value).__name__}"
                )
            _check_traversal(value, field_name)
            return value

        if field_type == FieldType.NUMBER:
            if isinstance(value, str):
                candidate = value.strip()
                if not _NUMBER_STRING.match(candidate):
                    raise _fail(field_name, "must be a valid number")
                if _INTEGER_STRING.match(candidate):
                    return int(candidate, 10)
                return float(candidate)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise _fail(field_name, "must be a number")
            if isinstance(value, float) and not math.isfinite(value):
                raise _fail(field_name, "must be a number")
            return value

        if field_type == FieldType.INTEGER:
            if isinstance(value, str):
                candidate = value.strip()
                if not _INTEGER_STRING.match(candidate):
                    raise _fail(field_name, "must be an integer")
                return int(candidate, 10)
            if isinstance(value, float) and value.is_integer():
                return int(value)
            if isinstance(value, bool) or not isinstance(value, int):
                raise _fail(field_name, "must be an integer")
            return value

        if field_type == FieldType.BOOLEAN:
            if value == "true":
                return True
            if value == "false":
                return False
            if not isinstance(value, bool):
                raise _fail(field_name, "must be a boolean")
            return value

        if field_type == FieldType.DATE:
            if isinstance(value, (datetime, date)):
                return value.isoformat()
            if not isinstance(value, str):
                raise _fail(field_name, "must be a date or date string")
            try:
                datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                raise _fail(field_name, "must be a valid date string") from None
            return value

        if field_type == FieldType.EMAIL:
            if not isinstance(value, str):
                raise _fail(field_name, "must be a valid email address")
            try:
                return self._sanitizer.normalize_email(value)
            except ValueError:
                raise _fail(field_name, "must be a valid email address") from None

        if field_type == FieldType.URL:
            if not isinstance(value, str):
                raise _fail(field_name, "must be a valid URL with protocol")
            try:
                parts = urlsplit(value)
            except ValueError:
                raise _fail(field_name, "must be a valid URL with protocol") from None
            if parts.scheme not in {"http", "https"} or not parts.netloc:
                raise _fail(field_name, "must be a valid URL with protocol")
            return value

        if field_type == FieldType.ARRAY:
            if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
                raise _fail(field_name, "must be an array")
            return list(value)

        if field_type == FieldType.OBJECT:
            if not isinstance(value, Mapping):
                raise _fail(field_name, "must be an object")
            return {
                str(key): item
                for key, item in value.items()
                if not _is_polluting_key(str(key))
            }

        if field_type == FieldType.ID:
            if isinstance(value, bool) or not isinstance(value, (str, int)):
                raise _fail(field_name, "must be a string or number ID")
            if isinstance(value, int):
                return value
            _check_traversal(value, field_name)
            if not PATTERNS["ID"].match(value):
                raise _fail(field_name, "contains invalid ID format")
            return value

        return value

    def _apply_rules(self, value: Any, spec: FieldSpec, field_name: str) -> Any:
        if isinstance(value, str):
            value = self._apply_string_rules(value, spec, field_name)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            self._apply_number_rules(value, spec, field_name)
        elif isinstance(value, list):
            value = self._apply_array_rules(value, spec, field_name)

        if spec.enum is not None and value not in spec.enum:
            choices = ", ".join(str(choice) for choice in spec.enum)
            raise _fail(field_name, f"must be one of: {choices}")

        if spec.validate is not None:
            outcome = spec.validate(value, field_name)
            if outcome is not True:
                message = (
                    outcome
                    if isinstance(outcome, str) and outcome
                    else f"Field '{field_name}' failed custom validation"
                )
                raise InputValidationError(message)
        return value

    def _apply_string_rules(self, value: str, spec: FieldSpec, field_name: str) -> str:
        if spec.min_length is not None and len(value) < spec.min_length:
            raise _fail(field_name, f"must be at least {spec.min_length} characters")
        if spec.max_length is not None and len(value) > spec.max_length:
            raise _fail(field_name, f"must be at most {spec.max_length} characters")

        if spec.pattern is not None:
            pattern = (
                PATTERNS[spec.pattern] if isinstance(spec.pattern, str) else spec.pattern
            )
            if not pattern.search(value):
                raise _fail(field_name, "has invalid format")

        if spec.sanitize and spec.type != FieldType.EMAIL:
            value = self.sanitize_string(value)
        if spec.trim:
            value = value.strip()
        return value

    def _apply_number_rules(
        self, value: float, spec: FieldSpec, field_name: str
    ) -> None:
        if spec.min is not None and value < spec.min:
            raise _fail(field_name, f"must be at least {_fmt(spec.min)}")
        if spec.max is not None and value > spec.max:
            raise _fail(field_name, f"must be at most {_fmt(spec.max)}")
        if spec.positive and value <= 0:
            raise _fail(field_name, "must be positive")

    def _apply_array_rules(
        self, value: list[Any], spec: FieldSpec, field_name: str
    ) -> list[Any]:
        min_items = spec.min_items if spec.min_items is not None else spec.min
        max_items = spec.max_items if spec.max_items is not None else spec.max
        if min_items is not None and len(value) < min_items:
            raise _fail(field_name, f"must have at least {_fmt(min_items)} items")
        if max_items is not None and len(value) > max_items:
            raise _fail(field_name, f"must have at most {_fmt(max_items)} items")

        if spec.items is None:
            return value
        validated = []
        for index, item in enumerate(value):
            result = self._validate_value(item, spec.items, f"{field_name}[{index}]")
            validated.append(None if result is _MISSING else result)
        return validated
