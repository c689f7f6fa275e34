"""
Clock abstractions for entity timestamps.

Notes
-----
Contexts never read wall-clock time directly. The gateway hands every context a
Clock, which stamps ``creation_date`` on insertion. Tests use ``StepClock`` to
get strictly increasing, reproducible timestamps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """A source of creation timestamps."""

    def now(self) -> datetime:
        """
        Return the current time.

        Returns
        -------
        datetime
            A timezone-aware datetime.
        """
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Clock that returns the current system time in UTC."""

    def now(self) -> datetime:
        """Return the current system time as an aware UTC datetime."""
        return datetime.now(timezone.utc)


@dataclass(slots=True)
class StepClock:
    """
    Clock that advances by a fixed step on every call.

    Parameters
    ----------
    start:
        First value returned. Naive values are treated as UTC.
    step:
        Increment applied after each call.
    """

    start: datetime
    step: timedelta = timedelta(seconds=1)
    _calls: int = field(default=0, init=False)

    def now(self) -> datetime:
        """Return ``start + n * step`` for the n-th call (0-based)."""
        base = self.start if self.start.tzinfo is not None else self.start.replace(tzinfo=timezone.utc)
        value = base + self.step * self._calls
        self._calls += 1
        return value


def to_storage_timestamp(value: datetime) -> str:
    """
    Render a timestamp in the fixed-width form stored in SQLite.

    The form sorts lexically in chronological order, which the
    ``ORDER BY creation_date`` clauses rely on.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_storage_timestamp(raw: str) -> datetime:
    """Parse a timestamp produced by ``to_storage_timestamp``."""
    return datetime.fromisoformat(raw)
