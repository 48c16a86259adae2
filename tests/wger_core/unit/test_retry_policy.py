from __future__ import annotations

import asyncio

import pytest
from tenacity import AsyncRetrying, RetryCallState

from tests.wger_core.support.fakes import RecordingSleep, ScriptedRandom
from wger_core.circuit_breaker import CircuitOpenError, CircuitState
from wger_core.errors import (
    HttpResponseError,
    InputValidationError,
    NetworkError,
    ProviderCapabilityError,
    RequestSetupError,
    RequestTimeoutError,
)
from wger_core.retry import RetryPolicy, build_interruptible_sleep, build_retrying

pytestmark = pytest.mark.asyncio


def _policy(**overrides: object) -> RetryPolicy:
    values: dict[str, object] = {
        "max_attempts": 3,
        "base_delay_ms": 1000,
        "max_delay_ms": 30_000,
        "random_source": ScriptedRandom([0.0]),
    }
    values.update(overrides)
    return RetryPolicy(**values)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"max_attempts": 0}, "max_attempts must be >= 1"),
        ({"base_delay_ms": -1}, "base_delay_ms must be >= 0"),
        ({"base_delay_ms": 10, "max_delay_ms": 5}, "max_delay_ms must be >= base_delay_ms"),
        ({"jitter_ratio": 1.5}, "jitter_ratio must be between 0 and 1"),
    ],
)
async def test_retry_policy_validation(kwargs: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        _policy(**kwargs)


async def test_rejects_random_source_without_random() -> None:
    with pytest.raises(
        ProviderCapabilityError,
        match="RetryPolicy: random_source must have a 'random' method",
    ):
        RetryPolicy(random_source=object())  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "error",
    [
        NetworkError("No response received from server"),
        RequestTimeoutError("timed out"),
        HttpResponseError("Too Many Requests", status=429),
        HttpResponseError("Bad Gateway", status=502),
        HttpResponseError("Internal Server Error", status=500),
    ],
)
async def test_retries_transient_failures(error: Exception) -> None:
    policy = _policy()

    assert policy.should_retry(error, 1) is True
    assert policy.should_retry(error, 2) is True
    assert policy.should_retry(error, 3) is False


@pytest.mark.parametrize("attempt", [1, 2, 3, 10])
@pytest.mark.parametrize(
    "error",
    [
        InputValidationError("Field 'x' must be at most 7"),
        RequestSetupError("bad config"),
        HttpResponseError("Not Found", status=404),
        HttpResponseError("Bad Request", status=400),
        CircuitOpenError("wger.de", state=CircuitState.OPEN, retry_after_ms=10),
        ValueError("not classified"),
    ],
)
async def test_never_retries_terminal_failures(error: Exception, attempt: int) -> None:
    assert _policy(max_attempts=20).should_retry(error, attempt) is False


async def test_network_and_timeout_flags_disable_retries() -> None:
    policy = _policy(retry_on_network_error=False, retry_on_timeout=False)

    assert policy.should_retry(NetworkError("down"), 1) is False
    assert policy.should_retry(RequestTimeoutError("slow"), 1) is False


async def test_custom_retryable_statuses() -> None:
    policy = _policy(retryable_statuses={503})

    assert policy.should_retry(HttpResponseError("x", status=503), 1) is True
    assert policy.should_retry(HttpResponseError("x", status=500), 1) is False
    assert policy.should_retry(HttpResponseError("x", status=429), 1) is False


async def test_delay_doubles_without_jitter() -> None:
    policy = _policy(random_source=ScriptedRandom([0.0]))

    assert [policy.get_retry_delay(n) for n in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]


async def test_delay_is_capped_at_max() -> None:
    policy = _policy(max_delay_ms=5000, random_source=ScriptedRandom([0.0]))

    assert policy.get_retry_delay(10) == 5000
    assert policy.get_retry_delay(60) == 5000


async def test_jitter_scales_delay_down_by_at_most_ratio() -> None:
    policy = _policy(random_source=ScriptedRandom([0.5, 0.999999]))

    assert policy.get_retry_delay(1) == 750
    assert policy.get_retry_delay(1) == 500


async def test_delays_never_exceed_max_with_any_jitter() -> None:
    values = [i / 20 for i in range(20)]
    policy = _policy(max_delay_ms=3000, random_source=ScriptedRandom(values))

    for attempt in range(1, 15):
        for _ in values:
            assert 0 <= policy.get_retry_delay(attempt) <= 3000


async def test_delay_sleeps_for_computed_backoff() -> None:
    sleep = RecordingSleep()
    policy = _policy(sleep=sleep)

    await policy.delay(2)

    assert sleep.delays == [2.0]


async def test_config_summary() -> None:
    config = _policy().config()

    assert config["max_attempts"] == 3
    assert config["retryable_statuses"] == "429,5xx"
    assert config["jitter_ratio"] == 0.5


async def test_build_retrying_follows_policy() -> None:
    sleep = RecordingSleep()
    policy = _policy(max_attempts=3, base_delay_ms=100, max_delay_ms=1000, sleep=sleep)
    before_sleep_attempts: list[int] = []

    def _before_sleep(state: RetryCallState) -> None:
        before_sleep_attempts.append(state.attempt_number)

    retrying = build_retrying(policy, before_sleep=_before_sleep)
    assert isinstance(retrying, AsyncRetrying)

    calls = 0
    with pytest.raises(NetworkError):
        async for attempt in retrying:
            with attempt:
                calls += 1
                raise NetworkError("down")

    assert calls == 3
    assert before_sleep_attempts == [1, 2]
    assert sleep.delays == [0.1, 0.2]


async def test_build_retrying_stops_on_terminal_error() -> None:
    retrying = build_retrying(_policy(sleep=RecordingSleep()))

    calls = 0
    with pytest.raises(InputValidationError):
        async for attempt in retrying:
            with attempt:
                calls += 1
                raise InputValidationError("bad payload")

    assert calls == 1


async def test_interruptible_sleep_returns_immediately_when_stop_event_is_set() -> None:
    stop_event = asyncio.Event()
    stop_event.set()
    sleep = build_interruptible_sleep(stop_event)

    await asyncio.wait_for(sleep(30.0), timeout=0.1)


async def test_interruptible_sleep_waits_for_delay_when_not_interrupted() -> None:
    stop_event = asyncio.Event()
    sleep = build_interruptible_sleep(stop_event)

    await asyncio.wait_for(sleep(0.01), timeout=0.2)
