"""
Clock -- injectable time source for lifecycle dates and ledger timestamps.

Responsibility:
    Two readings are needed by the kernel: the UTC instant stamped on ledger
    entries, and the site calendar date written into order / received /
    installed dates.  Both come from one Clock so a transition and the
    entries it causes can never disagree about "now".

Architecture position:
    Kernel > Domain.  SystemClock is the only place that reads wall time.

Failure modes:
    - ValueError from ``site_zone`` for an unknown IANA zone name.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def site_zone(name: str | None) -> tzinfo:
    """Resolve a zone name; ``None`` and "UTC" map to ``timezone.utc``."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"unknown time zone {name!r}")


class Clock(ABC):
    """
    Time source handed to services by constructor injection.

    Guarantees:
        - ``now_utc()`` is timezone-aware UTC.
        - ``today()`` is the calendar date of ``now_utc()`` in the site zone.
    """

    def __init__(self, zone: tzinfo = timezone.utc):
        self.zone = zone

    @abstractmethod
    def now_utc(self) -> datetime: ...

    def today(self) -> date:
        return self.now_utc().astimezone(self.zone).date()


class SystemClock(Clock):
    """Wall clock."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.  Time only moves through ``advance`` and
    ``advance_days``.
    """

    def __init__(
        self,
        start: datetime | None = None,
        zone: tzinfo = timezone.utc,
    ):
        super().__init__(zone)
        start = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start.astimezone(timezone.utc)

    def now_utc(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta) -> datetime:
        self._current += delta
        return self._current

    def advance_days(self, days: int = 1) -> date:
        """Move forward whole days and return the new site date."""
        self.advance(timedelta(days=days))
        return self.today()
