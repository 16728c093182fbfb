from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from spotcheck.models import DEFAULT_WORK_DAYS, DEFAULT_WORK_END_MINUTES, DEFAULT_WORK_START_MINUTES, Employee
from spotcheck.settings import get_settings

MINUTES_PER_DAY = 1440


@dataclass(frozen=True, slots=True)
class WorkWindow:
    start_minutes: int
    end_minutes: int

    def bounds_local(self, local_day: date) -> tuple[datetime, datetime]:
        midnight = datetime.combine(local_day, time(0, 0))
        return (
            midnight + timedelta(minutes=self.start_minutes),
            midnight + timedelta(minutes=self.end_minutes),
        )


def normalize_ts(ts_utc: datetime) -> datetime:
    # Some drivers (sqlite) hand back naive datetimes; everything stored is UTC.
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


def _offset() -> timedelta:
    return timedelta(minutes=get_settings().timezone_offset_minutes)


def to_local(now_utc: datetime) -> datetime:
    """UTC instant -> naive wall-clock time on the fixed-offset virtual local clock."""
    return (normalize_ts(now_utc) + _offset()).replace(tzinfo=None)


def to_utc(local_dt: datetime) -> datetime:
    return (local_dt.replace(tzinfo=None) - _offset()).replace(tzinfo=timezone.utc)


def local_today(now_utc: datetime) -> date:
    return to_local(now_utc).date()


def is_valid_work_window(start: int | None, end: int | None) -> bool:
    if start is None or end is None:
        return False
    return 0 <= start < MINUTES_PER_DAY and start < end <= MINUTES_PER_DAY


def normalize_work_window(start: int | None, end: int | None) -> WorkWindow:
    if not is_valid_work_window(start, end):
        return WorkWindow(DEFAULT_WORK_START_MINUTES, DEFAULT_WORK_END_MINUTES)
    return WorkWindow(int(start), int(end))  # type: ignore[arg-type]


def normalize_work_days(days: Iterable[int] | None) -> list[int]:
    normalized = sorted({int(day) for day in (days or []) if isinstance(day, int) and 1 <= day <= 7})
    return normalized or list(DEFAULT_WORK_DAYS)


def is_working_day(local_day: date, work_days: Iterable[int] | None) -> bool:
    return local_day.isoweekday() in normalize_work_days(work_days)


def is_within_work_window(local_dt: datetime, work_days: Iterable[int] | None, start: int, end: int) -> bool:
    if not is_working_day(local_dt.date(), work_days):
        return False
    window = normalize_work_window(start, end)
    window_start, window_end = window.bounds_local(local_dt.date())
    return window_start <= local_dt < window_end


def employee_window(employee: Employee) -> WorkWindow:
    return normalize_work_window(employee.work_start_minutes, employee.work_end_minutes)


def employee_is_in_window(employee: Employee, now_utc: datetime) -> bool:
    window = employee_window(employee)
    return is_within_work_window(
        to_local(now_utc),
        employee.work_days,
        window.start_minutes,
        window.end_minutes,
    )
