from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

import holidays

from scope_burndown.estimation.domain.models import ScopeCalendarSettings


logger = logging.getLogger(__name__)

_ONE_DAY = timedelta(days=1)


@dataclass
class HolidayCalendarCache:
    """Holiday calendars keyed by (country, subdivision).

    Calendars are expensive to build and are queried in tight sequencing
    loops, so one cache is created per process and only cleared through
    ``invalidate``. Unknown codes are cached as ``None`` (no holidays).
    """

    _calendars: dict[tuple[str, str | None], holidays.HolidayBase | None] = field(default_factory=dict)

    @staticmethod
    def _key(country: str, subdivision: str | None) -> tuple[str, str | None]:
        sub = subdivision.strip().upper() if subdivision and subdivision.strip() else None
        return (str(country or "").strip().upper(), sub)

    def get(self, country: str, subdivision: str | None = None) -> holidays.HolidayBase | None:
        key = self._key(country, subdivision)
        if key not in self._calendars:
            self._calendars[key] = self._build(*key)
        return self._calendars[key]

    def _build(self, country: str, subdivision: str | None) -> holidays.HolidayBase | None:
        if not country:
            return None
        try:
            return holidays.country_holidays(country, subdiv=subdivision)
        except (NotImplementedError, KeyError, ValueError) as exc:
            logger.warning(
                "No holiday calendar for %s%s, treating every weekday as a workday: %s",
                country,
                f":{subdivision}" if subdivision else "",
                exc,
            )
            return None

    def is_holiday(self, day: date, country: str, subdivision: str | None = None) -> bool:
        cal = self.get(country, subdivision)
        return cal is not None and day in cal

    def invalidate(self, country: str | None = None, subdivision: str | None = None) -> None:
        if country is None:
            self._calendars.clear()
            return
        self._calendars.pop(self._key(country, subdivision), None)

    def __len__(self) -> int:
        return len(self._calendars)


def is_workday(
    day: date,
    include_holidays: bool = True,
    country: str = "CZ",
    subdivision: str | None = None,
    cache: HolidayCalendarCache | None = None,
) -> bool:
    """Monday-Friday and, when holidays count, not a public holiday.

    Pass a long-lived ``cache``; without one a throwaway calendar is built.
    """
    if day.weekday() >= 5:
        return False
    if not include_holidays:
        return True
    cache = cache if cache is not None else HolidayCalendarCache()
    return not cache.is_holiday(day, country, subdivision)


@dataclass(frozen=True)
class WorkdayCalendar:
    """Workday arithmetic for one scope's calendar settings."""

    settings: ScopeCalendarSettings = field(default_factory=ScopeCalendarSettings)
    cache: HolidayCalendarCache = field(default_factory=HolidayCalendarCache)

    @classmethod
    def weekends_only(cls) -> "WorkdayCalendar":
        return cls(settings=ScopeCalendarSettings(include_holidays=False))

    def is_workday(self, day: date) -> bool:
        return is_workday(
            day,
            include_holidays=self.settings.include_holidays,
            country=self.settings.country,
            subdivision=self.settings.subdivision,
            cache=self.cache,
        )

    def add_workdays(self, day: date, workdays: int) -> date:
        """Advance by ``workdays`` workdays; the start day itself never counts."""
        result = day
        added = 0
        while added < workdays:
            result += _ONE_DAY
            if self.is_workday(result):
                added += 1
        return result

    def next_workday(self, day: date) -> date:
        """The day itself when it is a workday, otherwise the next one."""
        result = day
        while not self.is_workday(result):
            result += _ONE_DAY
        return result

    def workdays_between(self, start: date, end: date) -> list[date]:
        days: list[date] = []
        d = start
        while d <= end:
            if self.is_workday(d):
                days.append(d)
            d += _ONE_DAY
        return days

    def count_workdays(self, start: date, end: date) -> int:
        """Workdays in the inclusive interval [start, end]."""
        return len(self.workdays_between(start, end))

    def workdays_diff(self, start: date, end: date) -> int:
        """Signed workday distance, excluding the start day.

        Positive when end is after start, negative when it is before, 0 for
        the same day.
        """
        if start == end:
            return 0
        if start < end:
            return self.count_workdays(start + _ONE_DAY, end)
        return -self.count_workdays(end + _ONE_DAY, start)
