"""Reusable field specs, endpoint paths and exercise operation schemas."""

from __future__ import annotations

from types import MappingProxyType

from wger_core.input_validator import FieldSpec, FieldType, Schema

DEFAULT_LANGUAGE = "en"


class Endpoints:
    """wger REST endpoint paths. ``{id}`` placeholders are filled by the client."""

    INFO = "/api/v2/info/"
    EXERCISES = "/api/v2/exercisebaseinfo/"
    EXERCISE_BY_ID = "/api/v2/exercisebaseinfo/{id}/"
    EXERCISE_SEARCH = "/api/v2/exercise/search/"
    EXERCISE_CATEGORIES = "/api/v2/exercisecategory/"
    EXERCISE_IMAGES = "/api/v2/exerciseimage/"
    EXERCISE_COMMENTS = "/api/v2/exercisecomment/"
    MUSCLES = "/api/v2/muscle/"
    EQUIPMENT = "/api/v2/equipment/"
    DAYS = "/api/v2/day/"
    DAY_BY_ID = "/api/v2/day/{id}/"


COMMON = MappingProxyType(
    {
        "id": FieldSpec(type=FieldType.ID, required=True),
        "optional_id": FieldSpec(type=FieldType.ID),
        "search": FieldSpec(required=True, min_length=1, max_length=100),
        "name": FieldSpec(required=True, min_length=1, max_length=200),
        "description": FieldSpec(max_length=5000),
        "limit": FieldSpec(type=FieldType.INTEGER, min=1, max=100, default=20),
        "offset": FieldSpec(type=FieldType.INTEGER, min=0, default=0),
        "language": FieldSpec(pattern="LANGUAGE_CODE", default=DEFAULT_LANGUAGE),
        "date": FieldSpec(type=FieldType.DATE),
        "weight": FieldSpec(type=FieldType.NUMBER, required=True, min=0, max=1000),
        "reps": FieldSpec(type=FieldType.INTEGER, min=0, max=1000),
        "sets": FieldSpec(type=FieldType.INTEGER, min=0, max=100),
        "calories": FieldSpec(type=FieldType.NUMBER, min=0, max=10000),
        "protein": FieldSpec(type=FieldType.NUMBER, min=0, max=1000),
        "carbs": FieldSpec(type=FieldType.NUMBER, min=0, max=1000),
        "fat": FieldSpec(type=FieldType.NUMBER, min=0, max=1000),
        "barcode": FieldSpec(required=True, pattern="BARCODE"),
        "email": FieldSpec(type=FieldType.EMAIL, required=True),
        "url": FieldSpec(type=FieldType.URL),
    }
)

_PAGINATION = {"limit": COMMON["limit"], "offset": COMMON["offset"]}

EXERCISE_SCHEMAS = MappingProxyType(
    {
        "listExercises": Schema(
            fields={
                **_PAGINATION,
                "language": COMMON["language"],
                "muscles": FieldSpec(max_length=100, pattern="NUMERIC_LIST"),
                "equipment": FieldSpec(max_length=100, pattern="NUMERIC_LIST"),
                "category": FieldSpec(max_length=10, pattern=r"^\d+$"),
            }
        ),
        "searchExercises": Schema(
            fields={
                "term": FieldSpec(required=True, min_length=2, max_length=100),
                "language": COMMON["language"],
            }
        ),
        "getExercise": Schema(fields={"exerciseId": COMMON["id"]}),
        "getExerciseByBarcode": Schema(fields={"barcode": COMMON["barcode"]}),
        "getExerciseImages": Schema(fields={"exerciseId": COMMON["id"]}),
        "getExerciseComments": Schema(fields={"exerciseId": COMMON["id"]}),
        "getExerciseCategories": Schema(fields=_PAGINATION),
        "getMuscles": Schema(fields=_PAGINATION),
        "getEquipment": Schema(fields=_PAGINATION),
    }
)

DAY_SCHEMAS = MappingProxyType(
    {
        "getDay": Schema(fields={"dayId": COMMON["id"]}),
        "createDay": Schema(
            fields={
                "description": COMMON["description"],
                "workout": COMMON["id"],
                "day": FieldSpec(
                    type=FieldType.ARRAY,
                    required=True,
                    items=FieldSpec(type=FieldType.INTEGER, min=1, max=7),
                    min_items=1,
                    max_items=7,
                ),
            }
        ),
        "deleteDay": Schema(fields={"dayId": COMMON["id"]}),
    }
)
