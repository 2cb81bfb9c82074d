"""Family-local calendar helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ValidationError
from .models import Frequency


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FamilyClock:
    """Produce UTC timestamps and calendar days in the family's timezone.

    ``now`` is always timezone-aware UTC; only ``today`` looks at the family
    zone.
    ``now_fn`` must return an aware datetime and can be replaced to pin the
    clock.
    """

    def __init__(self, timezone_name: str = "UTC", *, now_fn: Optional[Callable[[], datetime]] = None) -> None:
        try:
            self.zone = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationError(f"Unknown timezone {timezone_name!r}.") from exc
        self.timezone_name = timezone_name
        self._now_fn = now_fn or _utc_now

    def now(self) -> datetime:
        return self._now_fn().astimezone(timezone.utc)

    def today(self) -> date:
        return self._now_fn().astimezone(self.zone).date()


class ManualClock(FamilyClock):
    """Clock whose current moment is set explicitly."""

    def __init__(self, moment: datetime, timezone_name: str = "UTC") -> None:
        super().__init__(timezone_name, now_fn=self._current)
        self._moment = moment if moment.tzinfo else moment.replace(tzinfo=self.zone)

    def _current(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = moment if moment.tzinfo else moment.replace(tzinfo=self.zone)

    def set_date(self, day: date) -> None:
        local = self._moment.astimezone(self.zone)
        self.set(datetime.combine(day, local.time().replace(tzinfo=None)))

    def advance(self, delta: timedelta) -> None:
        self._moment = self._moment + delta

    def advance_days(self, days: int) -> None:
        self.advance(timedelta(days=days))


def is_available_today(frequency: Frequency | str, today: date) -> bool:
    """Return ``True`` when an activity of ``frequency`` can be completed on ``today``."""

    frequency = Frequency(frequency)
    if frequency is Frequency.WEEKDAYS:
        return today.weekday() < 5
    return True


__all__ = ["FamilyClock", "ManualClock", "is_available_today"]
