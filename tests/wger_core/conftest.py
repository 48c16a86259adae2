from __future__ import annotations

import pytest

from tests.wger_core.support.fakes import ManualClock, StaticResolver


@pytest.fixture
def manual_clock() -> ManualClock:
    """Provide a clock that only moves when the test advances it."""
    return ManualClock()


@pytest.fixture
def public_resolver() -> StaticResolver:
    """Provide a resolver mapping every hostname to a public address."""
    return StaticResolver(["93.184.216.34"])
