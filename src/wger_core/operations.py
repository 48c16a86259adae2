"""Builders producing ``(client, payload)`` handlers for ``OperationRegistry``.

Each builder validates the payload against its schema when one is given and
otherwise checks that the identifying fields are present, then issues exactly
one client call.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Literal

from wger_core.errors import InputValidationError
from wger_core.input_validator import FieldSpec, InputValidator, Schema
from wger_core.registry import OperationHandler
from wger_core.schemas import (
    DAY_SCHEMAS,
    DEFAULT_LANGUAGE,
    EXERCISE_SCHEMAS,
    Endpoints,
)

if TYPE_CHECKING:
    from wger_core.client import ResilientClient

SchemaLike = Schema | Mapping[str, FieldSpec]
ParamSource = str | Callable[[Mapping[str, Any]], Any]

_default_validator = InputValidator()
_PAGE_PARAMS: Mapping[str, ParamSource] = {"limit": "limit", "offset": "offset"}


def require_fields(payload: Mapping[str, Any], fields: str | Iterable[str]) -> None:
    """Fail unless every named field is present and non-empty in ``payload``."""
    names = [fields] if isinstance(fields, str) else list(fields)
    for name in names:
        if payload.get(name) in (None, ""):
            raise InputValidationError(f"{name} is required")


def _prepare(
    payload: Mapping[str, Any],
    schema: SchemaLike | None,
    validator: InputValidator | None,
    required: str | Iterable[str] = (),
) -> dict[str, Any]:
    if schema is not None:
        return (validator or _default_validator).validate_payload(payload, schema)
    require_fields(payload, required)
    return dict(payload)


def list_operation(
    endpoint: str,
    params: Mapping[str, ParamSource] | None = None,
    schema: SchemaLike | None = None,
    *,
    validator: InputValidator | None = None,
) -> OperationHandler:
    """Build a GET handler mapping payload fields to query parameters.

    A string source copies the payload field only when the caller supplied it,
    so schema defaults do not leak into the query. A callable source is always
    evaluated against the validated payload and skipped when it returns None.
    """
    mapping = dict(params or {})

    async def _handler(client: ResilientClient, payload: Mapping[str, Any]) -> Any:
        validated = _prepare(payload, schema, validator)
        query: dict[str, Any] = {}
        for key, source in mapping.items():
            if callable(source):
                value = source(validated)
                if value is not None:
                    query[key] = value
            elif payload.get(source) is not None and validated.get(source) is not None:
                query[key] = validated[source]
        return await client.get(endpoint, params=query)

    return _handler


def get_by_id_operation(
    endpoint_template: str,
    id_field: str,
    schema: SchemaLike | None = None,
    *,
    validator: InputValidator | None = None,
) -> OperationHandler:
    async def _handler(client: ResilientClient, payload: Mapping[str, Any]) -> Any:
        validated = _prepare(payload, schema, validator, id_field)
        return await client.get(endpoint_template, params={"id": validated[id_field]})

    return _handler


def search_operation(
    endpoint: str,
    search_field: str = "term",
    extra_params: Mapping[str, Any] | None = None,
    schema: SchemaLike | None = None,
    *,
    validator: InputValidator | None = None,
) -> OperationHandler:
    """Build a GET handler sending ``search_field`` plus overridable extras."""
    defaults = dict(extra_params or {})

    async def _handler(client: ResilientClient, payload: Mapping[str, Any]) -> Any:
        validated = _prepare(payload, schema, validator, search_field)
        query = {search_field: validated[search_field], **defaults}
        for key in defaults:
            if validated.get(key) is not None:
                query[key] = validated[key]
        return await client.get(endpoint, params=query)

    return _handler


def create_operation(
    endpoint: str,
    transform: Callable[[dict[str, Any]], Any] | None = None,
    schema: SchemaLike | None = None,
    *,
    validator: InputValidator | None = None,
) -> OperationHandler:
    async def _handler(client: ResilientClient, payload: Mapping[str, Any]) -> Any:
        validated = _prepare(payload, schema, validator)
        body = transform(validated) if transform is not None else validated
        return await client.post(endpoint, data=body)

    return _handler


def update_operation(
    endpoint_template: str,
    id_field: str,
    method: Literal["patch", "put"] = "patch",
    schema: SchemaLike | None = None,
    *,
    validator: InputValidator | None = None,
) -> OperationHandler:
    """Build a PATCH or PUT handler sending every field except ``id_field``."""

    async def _handler(client: ResilientClient, payload: Mapping[str, Any]) -> Any:
        validated = _prepare(payload, schema, validator, id_field)
        body = {key: value for key, value in validated.items() if key != id_field}
        send = client.patch if method == "patch" else client.put
        return await send(
            endpoint_template, data=body, params={"id": validated[id_field]}
        )

    return _handler


def delete_operation(
    endpoint_template: str,
    id_field: str,
    schema: SchemaLike | None = None,
    *,
    validator: InputValidator | None = None,
) -> OperationHandler:
    async def _handler(client: ResilientClient, payload: Mapping[str, Any]) -> Any:
        validated = _prepare(payload, schema, validator, id_field)
        return await client.delete(
            endpoint_template, params={"id": validated[id_field]}
        )

    return _handler


def custom_operation(
    required: Iterable[str],
    handler: Callable[[ResilientClient, dict[str, Any]], Awaitable[Any]],
    schema: SchemaLike | None = None,
    *,
    validator: InputValidator | None = None,
) -> OperationHandler:
    required_fields = tuple(required)

    async def _handler(client: ResilientClient, payload: Mapping[str, Any]) -> Any:
        validated = _prepare(payload, schema, validator, required_fields)
        return await handler(client, validated)

    return _handler


def _language(payload: Mapping[str, Any]) -> str:
    return payload.get("language") or DEFAULT_LANGUAGE


async def _search_exercises(client: ResilientClient, payload: dict[str, Any]) -> Any:
    return await client.get(
        Endpoints.EXERCISE_SEARCH,
        params={"term": payload["term"], "language": _language(payload)},
    )


async def _exercise_by_barcode(client: ResilientClient, payload: dict[str, Any]) -> Any:
    return await client.get(
        Endpoints.EXERCISE_SEARCH,
        params={"term": payload["barcode"], "type": "barcode"},
    )


async def _exercise_images(client: ResilientClient, payload: dict[str, Any]) -> Any:
    return await client.get(
        Endpoints.EXERCISE_IMAGES, params={"exercise_base": payload["exerciseId"]}
    )


async def _exercise_comments(client: ResilientClient, payload: dict[str, Any]) -> Any:
    return await client.get(
        Endpoints.EXERCISE_COMMENTS, params={"exercise": payload["exerciseId"]}
    )


def exercise_operations(
    validator: InputValidator | None = None,
) -> dict[str, OperationHandler]:
    """Return the exercise handlers keyed by operation name."""
    return {
        "listExercises": list_operation(
            Endpoints.EXERCISES,
            {
                **_PAGE_PARAMS,
                "language": _language,
                "muscles": "muscles",
                "equipment": "equipment",
                "category": "category",
            },
            EXERCISE_SCHEMAS["listExercises"],
            validator=validator,
        ),
        "searchExercises": custom_operation(
            ["term"],
            _search_exercises,
            EXERCISE_SCHEMAS["searchExercises"],
            validator=validator,
        ),
        "getExercise": get_by_id_operation(
            Endpoints.EXERCISE_BY_ID,
            "exerciseId",
            EXERCISE_SCHEMAS["getExercise"],
            validator=validator,
        ),
        "getExerciseByBarcode": custom_operation(
            ["barcode"],
            _exercise_by_barcode,
            EXERCISE_SCHEMAS["getExerciseByBarcode"],
            validator=validator,
        ),
        "getExerciseImages": custom_operation(
            ["exerciseId"],
            _exercise_images,
            EXERCISE_SCHEMAS["getExerciseImages"],
            validator=validator,
        ),
        "getExerciseComments": custom_operation(
            ["exerciseId"],
            _exercise_comments,
            EXERCISE_SCHEMAS["getExerciseComments"],
            validator=validator,
        ),
        "getExerciseCategories": list_operation(
            Endpoints.EXERCISE_CATEGORIES,
            _PAGE_PARAMS,
            schema=EXERCISE_SCHEMAS["getExerciseCategories"],
            validator=validator,
        ),
        "getMuscles": list_operation(
            Endpoints.MUSCLES,
            _PAGE_PARAMS,
            schema=EXERCISE_SCHEMAS["getMuscles"],
            validator=validator,
        ),
        "getEquipment": list_operation(
            Endpoints.EQUIPMENT,
            _PAGE_PARAMS,
            schema=EXERCISE_SCHEMAS["getEquipment"],
            validator=validator,
        ),
    }


def day_operations(
    validator: InputValidator | None = None,
) -> dict[str, OperationHandler]:
    """Return the workout-day handlers keyed by operation name."""
    return {
        "getDay": get_by_id_operation(
            Endpoints.DAY_BY_ID, "dayId", DAY_SCHEMAS["getDay"], validator=validator
        ),
        "createDay": create_operation(
            Endpoints.DAYS, schema=DAY_SCHEMAS["createDay"], validator=validator
        ),
        "deleteDay": delete_operation(
            Endpoints.DAY_BY_ID, "dayId", DAY_SCHEMAS["deleteDay"], validator=validator
        ),
    }
