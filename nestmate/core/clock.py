"""Time sources for the engines.

All expiry and boost-window math is a pure function of the instant returned
by :meth:`Clock.now`.  Engines read the clock **once** per operation and pass
that single instant down, so every check inside one request sees the same
time.

:class:`SystemClock` is used in production; :class:`FixedClock` lets tests
move time explicitly::

    clock = FixedClock(datetime(2026, 1, 1, tzinfo=UTC))
    clock.advance(hours=49)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

__all__ = ["Clock", "SystemClock", "FixedClock"]

logger = logging.getLogger(__name__)


@runtime_checkable
class Clock(Protocol):
    """Anything that can report the current UTC instant."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """A manually driven clock.

    Args:
        start: Initial instant.  Naive datetimes are interpreted as UTC.
    """

    def __init__(self, start: datetime) -> None:
        self._now = start if start.tzinfo else start.replace(tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant if instant.tzinfo else instant.replace(tzinfo=UTC)

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward by ``timedelta(**delta)`` and return the new instant."""
        self._now = self._now + timedelta(**delta)
        return self._now
