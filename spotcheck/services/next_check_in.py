from __future__ import annotations

import random
from datetime import date, datetime, timedelta

from spotcheck.models import Employee
from spotcheck.services.schedule_window import (
    employee_is_in_window,
    employee_window,
    is_working_day,
    normalize_ts,
    to_local,
    to_utc,
)

MIN_DELAY_MINUTES = 25
MAX_DELAY_MINUTES = 95
WINDOW_END_MARGIN_MINUTES = 1
SEARCH_HORIZON_DAYS = 14
SHORT_HORIZON_MIN_MINUTES = 5
SHORT_HORIZON_MAX_MINUTES = 15

_system_rng = random.SystemRandom()


def compute_next_check_in_at(
    employee: Employee,
    now_utc: datetime,
    *,
    rng: random.Random | None = None,
) -> datetime | None:
    """Next fallback trigger for ``employee``, or None when the horizon has no slot.

    Each candidate day picks a random instant 25-95 minutes past the window's
    effective start (today: not before now), keeping a minute of slack before
    the window closes.
    """
    rng = rng or _system_rng
    now_local = to_local(now_utc).replace(microsecond=0)
    window = employee_window(employee)

    for day_offset in range(SEARCH_HORIZON_DAYS):
        candidate_day = now_local.date() + timedelta(days=day_offset)
        if not is_working_day(candidate_day, employee.work_days):
            continue
        window_start, window_end = window.bounds_local(candidate_day)
        effective_start = max(window_start, now_local) if day_offset == 0 else window_start
        earliest = effective_start + timedelta(minutes=MIN_DELAY_MINUTES)
        latest = min(
            effective_start + timedelta(minutes=MAX_DELAY_MINUTES),
            window_end - timedelta(minutes=WINDOW_END_MARGIN_MINUTES),
        )
        if earliest > latest:
            continue
        span_seconds = int((latest - earliest).total_seconds())
        return to_utc(earliest + timedelta(seconds=rng.randint(0, span_seconds)))
    return None


def short_horizon_check_in_at(
    employee: Employee,
    now_utc: datetime,
    *,
    rng: random.Random | None = None,
) -> datetime | None:
    rng = rng or _system_rng
    if not employee_is_in_window(employee, now_utc):
        return None
    delay_seconds = rng.randint(SHORT_HORIZON_MIN_MINUTES * 60, SHORT_HORIZON_MAX_MINUTES * 60)
    candidate = normalize_ts(now_utc).replace(microsecond=0) + timedelta(seconds=delay_seconds)
    if not employee_is_in_window(employee, candidate):
        return None
    return candidate


def is_usable_hint(employee: Employee, hint_utc: datetime | None, *, today_local: date) -> bool:
    # A cached trigger only counts while it still sits inside the live work window.
    if hint_utc is None:
        return False
    if to_local(hint_utc).date() < today_local:
        return False
    return employee_is_in_window(employee, hint_utc)
