"""
Injectable time source.

Services that stamp or measure time receive a Clock instead of calling
``datetime.now()`` so tests can pin and advance it.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._now = fixed_time or datetime(2024, 1, 15, 9, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock
