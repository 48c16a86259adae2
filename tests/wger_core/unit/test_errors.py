from __future__ import annotations

import pytest

from wger_core.circuit_breaker import CircuitOpenError
from wger_core.errors import (
    ErrorKind,
    HttpResponseError,
    InputValidationError,
    InvalidOperationError,
    NetworkError,
    RequestSetupError,
    RequestTimeoutError,
    WgerError,
)


@pytest.mark.parametrize(
    ("error_type", "kind"),
    [
        (InputValidationError, ErrorKind.VALIDATION),
        (HttpResponseError, ErrorKind.HTTP_RESPONSE),
        (NetworkError, ErrorKind.NETWORK),
        (RequestTimeoutError, ErrorKind.TIMEOUT),
        (RequestSetupError, ErrorKind.REQUEST_SETUP),
        (InvalidOperationError, ErrorKind.REQUEST_SETUP),
        (CircuitOpenError, ErrorKind.CIRCUIT_OPEN),
    ],
)
def test_error_types_carry_kind(error_type: type[WgerError], kind: ErrorKind) -> None:
    assert issubclass(error_type, WgerError)
    assert error_type.kind == kind


def test_annotate_attempts_appends_suffix_once() -> None:
    error = NetworkError("No response received from server", code="ECONNREFUSED")

    error.annotate_attempts(3)
    error.annotate_attempts(5)

    assert str(error) == "No response received from server (failed after 3 attempts)"
    assert error.attempt_count == 3
    assert error.args == (error.message,)


def test_to_dict_omits_missing_fields() -> None:
    error = HttpResponseError("Not Found", status=404, data={"detail": "gone"})

    assert error.to_dict() == {
        "message": "Not Found",
        "kind": "HttpResponseError",
        "status": 404,
        "data": {"detail": "gone"},
    }
    assert RequestSetupError("boom").to_dict() == {
        "message": "boom",
        "kind": "RequestSetupError",
    }
