from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

import httpx


class FakeLogger:
    """Capture structured logger events for assertions."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.events.append(event)
        self.calls.append((level, event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    def fields_for(self, event: str) -> list[dict[str, object]]:
        return [kwargs for _, name, kwargs in self.calls if name == event]


@dataclass(slots=True)
class _Timer:
    due_at: float
    callback: Callable[[], None]
    cancelled: bool = False


class ManualClock:
    """Clock whose time only moves when a test calls ``advance``."""

    def __init__(self, start_ms: float = 1_000.0) -> None:
        self._now = start_ms
        self.timers: list[_Timer] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> _Timer:
        timer = _Timer(due_at=self._now + delay_ms, callback=callback)
        self.timers.append(timer)
        return timer

    def cancel(self, handle: object) -> None:
        if isinstance(handle, _Timer):
            handle.cancelled = True

    def pending(self) -> list[_Timer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def advance(self, delta_ms: float) -> None:
        self._now += delta_ms
        due = sorted(
            (t for t in self.timers if not t.cancelled and t.due_at <= self._now),
            key=lambda t: t.due_at,
        )
        for timer in due:
            timer.cancelled = True
            timer.callback()


class ScriptedRandom:
    """Random source replaying fixed values in a loop."""

    def __init__(self, values: Iterable[float] = (0.0,)) -> None:
        self._values = list(values)
        self._index = 0
        self.calls = 0

    def random(self) -> float:
        value = self._values[self._index % len(self._values)]
        self._index += 1
        self.calls += 1
        return value


@dataclass(slots=True)
class RecordingSanitizer:
    """Sanitizer double that records inputs and returns fixed transforms."""

    markup_calls: list[str] = field(default_factory=list)
    email_calls: list[str] = field(default_factory=list)

    def sanitize_markup(self, value: str) -> str:
        self.markup_calls.append(value)
        return value.replace("<b>", "").replace("</b>", "")

    def normalize_email(self, value: str) -> str:
        self.email_calls.append(value)
        if "@" not in value:
            raise ValueError("not an email")
        return value.strip().lower()


class ClockWithoutCancel:
    def now(self) -> float:
        return 0.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> None:
        return None


class ClockWithNonCallableNow:
    now = 0.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> None:
        return None

    def cancel(self, handle: object) -> None:
        return None


class SanitizerWithoutEmail:
    def sanitize_markup(self, value: str) -> str:
        return value


class StaticResolver:
    """Resolver returning canned addresses or raising a canned error."""

    def __init__(
        self,
        addresses: Sequence[str] = (),
        *,
        error: Exception | None = None,
    ) -> None:
        self._addresses = list(addresses)
        self._error = error
        self.lookups: list[str] = []

    async def resolve(self, hostname: str) -> Sequence[str]:
        self.lookups.append(hostname)
        if self._error is not None:
            raise self._error
        return self._addresses


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class RecordingClient:
    """Stand-in for ``ResilientClient`` recording each call it receives."""

    def __init__(self, response: object = None) -> None:
        self.response = {"ok": True} if response is None else response
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    async def _record(self, method: str, endpoint: str, **kwargs: object) -> object:
        self.calls.append((method, endpoint, kwargs))
        return self.response

    async def get(self, endpoint: str, **kwargs: object) -> object:
        return await self._record("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs: object) -> object:
        return await self._record("POST", endpoint, **kwargs)

    async def put(self, endpoint: str, **kwargs: object) -> object:
        return await self._record("PUT", endpoint, **kwargs)

    async def patch(self, endpoint: str, **kwargs: object) -> object:
        return await self._record("PATCH", endpoint, **kwargs)

    async def delete(self, endpoint: str, **kwargs: object) -> object:
        return await self._record("DELETE", endpoint, **kwargs)


class StalledTransport(httpx.AsyncBaseTransport):
    """Transport whose requests never complete until cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("stalled request resumed")
