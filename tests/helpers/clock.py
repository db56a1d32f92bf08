"""Controllable clocks for cache and correlation tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


class FakeMonotonic:
    """Stand-in for ``time.monotonic``; call :meth:`advance` to move time."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """Returns a fixed aware UTC instant until moved."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)
