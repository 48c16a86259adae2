from __future__ import annotations

import asyncio

import pytest

from tests.wger_core.support.fakes import ClockWithoutCancel, SanitizerWithoutEmail
from wger_core.errors import ProviderCapabilityError
from wger_core.providers import (
    DefaultSanitizer,
    SystemClock,
    SystemRandom,
    require_capabilities,
)


def test_require_capabilities_rejects_missing_provider() -> None:
    with pytest.raises(ProviderCapabilityError, match="^CircuitBreaker: clock is required$"):
        require_capabilities(
            None, component="CircuitBreaker", role="clock", capabilities=("now",)
        )


@pytest.mark.parametrize(
    ("provider", "capabilities", "message"),
    [
        (ClockWithoutCancel(), ("now", "call_later", "cancel"), "clock must have a 'cancel' method"),
        (SanitizerWithoutEmail(), ("normalize_email",), "clock must have a 'normalize_email' method"),
    ],
)
def test_require_capabilities_names_missing_method(
    provider: object, capabilities: tuple[str, ...], message: str
) -> None:
    with pytest.raises(ProviderCapabilityError, match=message):
        require_capabilities(
            provider, component="Component", role="clock", capabilities=capabilities
        )


def test_provider_capability_error_is_a_type_error() -> None:
    assert issubclass(ProviderCapabilityError, TypeError)


def test_system_random_is_reproducible_with_seed() -> None:
    first, second = SystemRandom(seed=7), SystemRandom(seed=7)

    values = [first.random() for _ in range(3)]
    assert values == [second.random() for _ in range(3)]
    assert all(0.0 <= value < 1.0 for value in values)


def test_system_clock_without_running_loop_schedules_nothing() -> None:
    clock = SystemClock()

    assert clock.call_later(10, lambda: None) is None
    clock.cancel(None)
    assert clock.now() > 0


@pytest.mark.asyncio
async def test_system_clock_timer_fires_and_cancels() -> None:
    clock = SystemClock()
    fired: list[str] = []

    handle = clock.call_later(0, lambda: fired.append("first"))
    cancelled = clock.call_later(0, lambda: fired.append("second"))
    clock.cancel(cancelled)
    await asyncio.sleep(0.01)

    assert handle is not None
    assert fired == ["first"]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("plain text", "plain text"),
        ("<b>bold</b> move", "bold move"),
        ("squat<script>alert('x')</script>", "squat"),
        ("<img src=x onerror=alert(1)>curl", "curl"),
        ("fish &amp; chips", "fish &amp; chips"),
    ],
)
def test_default_sanitizer_strips_markup(value: str, expected: str) -> None:
    assert DefaultSanitizer().sanitize_markup(value) == expected


def test_default_sanitizer_normalizes_email() -> None:
    sanitizer = DefaultSanitizer()

    assert sanitizer.normalize_email("  Coach@Example.COM ") == "coach@example.com"
    with pytest.raises(ValueError):
        sanitizer.normalize_email("coach@")
