from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Collection
from contextlib import suppress

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt
from tenacity.retry import retry_base

from wger_core.errors import (
    ErrorKind,
    HttpResponseError,
    NetworkError,
    RequestTimeoutError,
    WgerError,
)
from wger_core.providers import RandomSource, SystemRandom, require_capabilities

Sleep = Callable[[float], Awaitable[None]]

_NEVER_RETRIED = frozenset(
    {ErrorKind.VALIDATION, ErrorKind.REQUEST_SETUP, ErrorKind.CIRCUIT_OPEN}
)


class RetryPolicy:
    """Retry decisions and exponential backoff with multiplicative jitter.

    The delay for attempt ``n`` is ``base_delay_ms * 2 ** (n - 1)`` capped at
    ``max_delay_ms`` and then scaled by a factor drawn from
    ``[1 - jitter_ratio, 1.0]``, so jitter never pushes a delay above the cap.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay_ms: float = 1000.0,
        max_delay_ms: float = 30_000.0,
        jitter_ratio: float = 0.5,
        retryable_statuses: Collection[int] | None = None,
        retry_on_network_error: bool = True,
        retry_on_timeout: bool = True,
        random_source: RandomSource | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        """Create a retry policy.

        Args:
            max_attempts: Total attempts including the first one.
            base_delay_ms: Delay before the second attempt, before jitter.
            max_delay_ms: Upper bound on any computed delay.
            jitter_ratio: Fraction of the delay that jitter may remove.
            retryable_statuses: HTTP statuses worth retrying. Defaults to 429
                and every 5xx status.
            retry_on_network_error: Retry when no response was received.
            retry_on_timeout: Retry when the transport deadline expired.
            random_source: Source exposing ``random``. Defaults to
                ``SystemRandom()``.
            sleep: Async sleep taking seconds. Defaults to ``asyncio.sleep``.

        Raises:
            ValueError: When numeric bounds are inconsistent.
            ProviderCapabilityError: When ``random_source`` lacks ``random``.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")
        if max_delay_ms < 0:
            raise ValueError("max_delay_ms must be >= 0")
        if max_delay_ms < base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0 and 1")

        resolved_random = SystemRandom() if random_source is None else random_source
        require_capabilities(
            resolved_random,
            component="RetryPolicy",
            role="random_source",
            capabilities=("random",),
        )
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_ratio = jitter_ratio
        self.retryable_statuses = (
            None if retryable_statuses is None else frozenset(retryable_statuses)
        )
        self.retry_on_network_error = retry_on_network_error
        self.retry_on_timeout = retry_on_timeout
        self._random = resolved_random
        self.sleep: Sleep = asyncio.sleep if sleep is None else sleep

    def should_retry(self, error: BaseException, attempt_number: int) -> bool:
        """Return whether ``error`` raised by attempt ``attempt_number`` is retried."""
        if attempt_number >= self.max_attempts:
            return False
        if not isinstance(error, WgerError) or error.kind in _NEVER_RETRIED:
            return False
        if isinstance(error, HttpResponseError):
            return self._is_retryable_status(error.status)
        if isinstance(error, RequestTimeoutError):
            return self.retry_on_timeout
        if isinstance(error, NetworkError):
            return self.retry_on_network_error
        return False

    def get_retry_delay(self, attempt_number: int) -> int:
        """Return the backoff in milliseconds after attempt ``attempt_number``."""
        exponent = max(attempt_number - 1, 0)
        capped = min(self.base_delay_ms * (2**exponent), self.max_delay_ms)
        factor = 1.0 - self.jitter_ratio * self._random.random()
        return max(0, min(round(capped * factor), int(self.max_delay_ms)))

    async def delay(self, attempt_number: int) -> None:
        """Suspend for the backoff computed for ``attempt_number``."""
        await self.sleep(self.get_retry_delay(attempt_number) / 1000.0)

    def config(self) -> dict[str, object]:
        """Return a summary of the policy configuration for logging."""
        return {
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "jitter_ratio": self.jitter_ratio,
            "retryable_statuses": (
                "429,5xx"
                if self.retryable_statuses is None
                else sorted(self.retryable_statuses)
            ),
            "retry_on_network_error": self.retry_on_network_error,
            "retry_on_timeout": self.retry_on_timeout,
        }

    def _is_retryable_status(self, status: int | None) -> bool:
        if status is None:
            return False
        if self.retryable_statuses is not None:
            return status in self.retryable_statuses
        return status == 429 or 500 <= status <= 599


class _RetryWithPolicy(retry_base):
    """Tenacity retry predicate delegating to ``RetryPolicy.should_retry``."""

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        error = outcome.exception()
        if error is None:
            return False
        return self._policy.should_retry(error, retry_state.attempt_number)


def build_interruptible_sleep(stop_event: asyncio.Event) -> Sleep:
    """Build an async sleep that exits early when shutdown is requested."""

    async def _interruptible_sleep(delay: float) -> None:
        if stop_event.is_set():
            return

        bounded_delay = max(delay, 0.0)
        with suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=bounded_delay)

    return _interruptible_sleep


def build_retrying(
    policy: RetryPolicy,
    *,
    sleep: Sleep | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` whose stop, wait and retry follow ``policy``."""

    def _wait(retry_state: RetryCallState) -> float:
        return policy.get_retry_delay(retry_state.attempt_number) / 1000.0

    if before_sleep is None:
        return AsyncRetrying(
            retry=_RetryWithPolicy(policy),
            wait=_wait,
            stop=stop_after_attempt(policy.max_attempts),
            sleep=policy.sleep if sleep is None else sleep,
            reraise=True,
        )
    return AsyncRetrying(
        retry=_RetryWithPolicy(policy),
        wait=_wait,
        stop=stop_after_attempt(policy.max_attempts),
        sleep=policy.sleep if sleep is None else sleep,
        before_sleep=before_sleep,
        reraise=True,
    )
