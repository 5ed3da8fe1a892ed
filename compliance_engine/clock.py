"""Injectable clock so every time-dependent decision can be replayed."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current timezone-aware datetime."""
        ...

    def today(self) -> date:
        """Return the current date."""
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Manually controlled clock for tests and simulations.

    Parameters
    ----------
    current : datetime | date
        Starting instant. Plain dates become midnight UTC; naive datetimes
        are taken as UTC.
    """

    def __init__(self, current: datetime | date) -> None:
        self._current = _to_utc(current)

    def now(self) -> datetime:
        return self._current

    def today(self) -> date:
        return self._current.date()

    def set(self, current: datetime | date) -> None:
        """Jump to an absolute instant."""
        self._current = _to_utc(current)

    def advance(self, days: int = 0, **kwargs: float) -> datetime:
        """Move forward by a ``timedelta`` and return the new instant."""
        self._current += timedelta(days=days, **kwargs)
        return self._current


def _to_utc(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
