"""Shared test fixtures."""

from datetime import datetime, timedelta, UTC

import pytest


class FakeClock:
    """Settable clock injected wherever components read "now"."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    """A clock pinned to 2024-01-15 12:00 UTC."""
    return FakeClock(datetime(2024, 1, 15, 12, 0, tzinfo=UTC))
