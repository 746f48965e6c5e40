"""
Global pytest configuration and fixtures for the Notably fact store.

Provides:
- A controllable clock for tombstone timestamps
- A Fact factory with sensible defaults
- A fixed reference instant (T0) for time-travel scenarios
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from notably.common.logging import clear_correlation_id
from notably.models import Fact

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; call it to read the current instant."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, at: datetime) -> None:
        self.now = at

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0 + timedelta(hours=1))


@pytest.fixture
def make_fact():
    """Factory for Facts; every field can be overridden."""

    def _make(**overrides: Any) -> Fact:
        values: dict[str, Any] = {
            "id": "fact-1",
            "timestamp": T0,
            "namespace": "ns",
            "field_name": "x",
            "data_type": "string",
            "value": "v1",
        }
        values.update(overrides)
        return Fact(**values)

    return _make


@pytest.fixture(autouse=True)
def reset_correlation_id():
    yield
    clear_correlation_id()
