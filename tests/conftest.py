"""Shared fixtures.

Provides:
- A no-op async sleep so retry and rate limiter tests never wait
- A fake monotonic clock that advances when the fake sleep is awaited
- Settings cache isolation between tests
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.restaurant_ops.config import get_settings


class FakeClock:
    """Monotonic clock in seconds, advanced only by FakeClock.sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
