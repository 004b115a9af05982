from __future__ import annotations

from datetime import date, timedelta

import pytest

from scope_burndown.estimation.calendar.workdays import (
    HolidayCalendarCache,
    WorkdayCalendar,
    is_workday,
)
from scope_burndown.estimation.domain.models import ScopeCalendarSettings


MONDAY = date(2025, 1, 6)


def _cz(cache: HolidayCalendarCache | None = None) -> WorkdayCalendar:
    return WorkdayCalendar(
        settings=ScopeCalendarSettings(include_holidays=True, country="CZ"),
        cache=cache or HolidayCalendarCache(),
    )


def test_weekends_are_never_workdays() -> None:
    plain = WorkdayCalendar.weekends_only()
    cz = _cz()
    for offset in range(70):
        day = MONDAY + timedelta(days=offset)
        if day.weekday() >= 5:
            assert not plain.is_workday(day)
            assert not cz.is_workday(day)
        else:
            assert plain.is_workday(day)


def test_public_holidays_only_count_when_enabled() -> None:
    new_year = date(2025, 1, 1)
    assert not _cz().is_workday(new_year)
    assert WorkdayCalendar.weekends_only().is_workday(new_year)
    assert not is_workday(new_year, include_holidays=True, country="CZ")
    assert is_workday(new_year, include_holidays=False, country="CZ")


def test_add_workdays_never_counts_the_start_day() -> None:
    cal = WorkdayCalendar.weekends_only()
    assert cal.add_workdays(MONDAY, 0) == MONDAY
    assert cal.add_workdays(MONDAY, 1) == date(2025, 1, 7)
    assert cal.add_workdays(date(2025, 1, 10), 1) == date(2025, 1, 13)
    assert cal.add_workdays(date(2025, 1, 11), 1) == date(2025, 1, 13)
    assert cal.add_workdays(MONDAY, 5) == date(2025, 1, 13)


def test_add_workdays_skips_holidays() -> None:
    assert _cz().add_workdays(date(2024, 12, 31), 1) == date(2025, 1, 2)
    assert WorkdayCalendar.weekends_only().add_workdays(date(2024, 12, 31), 1) == date(2025, 1, 1)


@pytest.mark.parametrize("a,b", [(0, 0), (0, 3), (1, 4), (3, 7), (5, 5), (12, 1)])
def test_add_workdays_is_additive(a: int, b: int) -> None:
    cal = _cz()
    for start in (MONDAY, date(2025, 1, 11), date(2025, 12, 22)):
        assert cal.add_workdays(cal.add_workdays(start, a), b) == cal.add_workdays(start, a + b)


def test_next_workday() -> None:
    cal = WorkdayCalendar.weekends_only()
    assert cal.next_workday(MONDAY) == MONDAY
    assert cal.next_workday(date(2025, 1, 11)) == date(2025, 1, 13)
    assert _cz().next_workday(date(2025, 1, 1)) == date(2025, 1, 2)


def test_count_workdays_is_inclusive() -> None:
    cal = WorkdayCalendar.weekends_only()
    assert cal.count_workdays(MONDAY, date(2025, 1, 12)) == 5
    assert cal.count_workdays(MONDAY, MONDAY) == 1
    assert cal.count_workdays(date(2025, 1, 11), date(2025, 1, 12)) == 0
    assert cal.count_workdays(date(2025, 1, 12), MONDAY) == 0
    assert cal.workdays_between(date(2025, 1, 10), date(2025, 1, 13)) == [
        date(2025, 1, 10),
        date(2025, 1, 13),
    ]


def test_workdays_diff_is_signed_and_excludes_start() -> None:
    cal = WorkdayCalendar.weekends_only()
    assert cal.workdays_diff(MONDAY, MONDAY) == 0
    assert cal.workdays_diff(MONDAY, date(2025, 1, 9)) == 3
    assert cal.workdays_diff(date(2025, 1, 9), MONDAY) == -3
    assert cal.workdays_diff(date(2025, 1, 10), date(2025, 1, 13)) == 1
    assert cal.workdays_diff(date(2025, 1, 11), date(2025, 1, 12)) == 0


def test_unknown_calendar_falls_back_to_no_holidays() -> None:
    cache = HolidayCalendarCache()
    cal = WorkdayCalendar(
        settings=ScopeCalendarSettings(include_holidays=True, country="XX"),
        cache=cache,
    )
    assert cal.is_workday(date(2025, 1, 1))
    assert cache.get("XX") is None
    assert len(cache) == 1


def test_unknown_subdivision_falls_back_to_no_holidays() -> None:
    cache = HolidayCalendarCache()
    assert cache.get("DE", "ZZ") is None
    assert not cache.is_holiday(date(2025, 12, 25), "DE", "ZZ")


def test_holiday_cache_reuses_and_invalidates_calendars() -> None:
    cache = HolidayCalendarCache()
    first = cache.get("cz")
    assert first is not None
    assert cache.get("CZ") is first
    assert len(cache) == 1

    cache.invalidate("CZ")
    assert len(cache) == 0
    assert cache.get("CZ") is not first

    cache.get("DE", "BY")
    cache.invalidate()
    assert len(cache) == 0


def test_module_is_workday_defaults_to_the_holiday_calendar() -> None:
    assert ScopeCalendarSettings().include_holidays is True
    assert not is_workday(date(2025, 1, 1))
    assert is_workday(date(2025, 1, 2))
