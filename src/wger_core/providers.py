"""Injectable time, randomness and sanitization providers.

Components accept these providers at construction and check them with
``require_capabilities`` so that a misshapen test double fails loudly instead of
failing on first use deep inside a request.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Sequence
from html.parser import HTMLParser
from typing import Protocol

from pydantic import validate_email

from wger_core.errors import ProviderCapabilityError

_DROPPED_ELEMENTS = frozenset({"script", "style", "iframe", "object", "embed"})


class Clock(Protocol):
    """Time source measured in milliseconds."""

    def now(self) -> float:
        """Return the current time in milliseconds."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> object:
        """Schedule ``callback`` after ``delay_ms`` and return a cancel handle."""

    def cancel(self, handle: object) -> None:
        """Cancel a handle returned by ``call_later``."""


class RandomSource(Protocol):
    """Uniform random number source."""

    def random(self) -> float:
        """Return a float in ``[0.0, 1.0)``."""


class Sanitizer(Protocol):
    """String sanitization capabilities used by the input validator."""

    def sanitize_markup(self, value: str) -> str:
        """Strip unsafe markup from ``value``."""

    def normalize_email(self, value: str) -> str:
        """Return a canonical form of an email address."""


def require_capabilities(
    provider: object,
    *,
    component: str,
    role: str,
    capabilities: Sequence[str],
) -> None:
    """Fail unless ``provider`` exposes every named capability as a callable."""
    if provider is None:
        raise ProviderCapabilityError(f"{component}: {role} is required")
    for capability in capabilities:
        if not callable(getattr(provider, capability, None)):
            raise ProviderCapabilityError(
                f"{component}: {role} must have a '{capability}' method"
            )


class SystemClock:
    """Monotonic clock with timers on the running asyncio loop."""

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def call_later(
        self, delay_ms: float, callback: Callable[[], None]
    ) -> asyncio.TimerHandle | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        return loop.call_later(max(delay_ms, 0.0) / 1000.0, callback)

    def cancel(self, handle: object) -> None:
        if isinstance(handle, asyncio.TimerHandle):
            handle.cancel()


class SystemRandom:
    """Random source backed by the ``random`` module."""

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(seed)

    def random(self) -> float:
        return self._random.random()


class _MarkupStripper(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=False)
        self._parts: list[str] = []
        self._dropped_depth = 0

    def handle_starttag(self, tag: str, attrs: object) -> None:
        if tag in _DROPPED_ELEMENTS:
            self._dropped_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in _DROPPED_ELEMENTS and self._dropped_depth:
            self._dropped_depth -= 1

    def handle_data(self, data: str) -> None:
        if not self._dropped_depth:
            self._parts.append(data)

    def handle_entityref(self, name: str) -> None:
        self.handle_data(f"&{name};")

    def handle_charref(self, name: str) -> None:
        self.handle_data(f"&#{name};")

    def text(self) -> str:
        return "".join(self._parts)


class DefaultSanitizer:
    """Strip all markup and normalize emails to lowercase canonical form."""

    def sanitize_markup(self, value: str) -> str:
        if "<" not in value:
            return value
        stripper = _MarkupStripper()
        stripper.feed(value)
        stripper.close()
        return stripper.text()

    def normalize_email(self, value: str) -> str:
        _, email = validate_email(value.strip())
        return email.lower()
