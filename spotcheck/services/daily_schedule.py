from __future__ import annotations

import logging
import random
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spotcheck.db import SessionLocal
from spotcheck.models import Employee, ScheduleItem, ScheduleItemStatus
from spotcheck.services.schedule_window import (
    WorkWindow,
    employee_window,
    is_working_day,
    to_local,
    to_utc,
)
from spotcheck.settings import get_settings

logger = logging.getLogger("spotcheck.daily_schedule")

_system_rng = random.SystemRandom()


def apply_staged_target(employee: Employee, *, today_local: date) -> bool:
    pending_target = employee.daily_check_in_target_pending
    pending_from = employee.daily_check_in_target_pending_from
    if pending_target is None or pending_from is None or pending_from > today_local:
        return False
    employee.daily_check_in_target = pending_target
    employee.daily_check_in_target_pending = None
    employee.daily_check_in_target_pending_from = None
    return True


def effective_daily_target(employee: Employee, *, today_local: date) -> int:
    """Target that governs ``today_local``; a staged change counts once its date arrives."""
    pending_from = employee.daily_check_in_target_pending_from
    if employee.daily_check_in_target_pending is not None and pending_from is not None and pending_from <= today_local:
        return max(0, employee.daily_check_in_target_pending)
    return max(0, employee.daily_check_in_target or 0)


def has_schedule_for_day(db: Session, *, employee_id: int, local_day: date) -> bool:
    existing = db.scalar(
        select(ScheduleItem.id)
        .where(
            ScheduleItem.employee_id == employee_id,
            ScheduleItem.local_date == local_day,
        )
        .limit(1)
    )
    return existing is not None


def build_daily_slot_times(
    window: WorkWindow,
    local_day: date,
    count: int,
    *,
    gap_minutes: int,
    not_before_local: datetime | None = None,
    rng: random.Random | None = None,
) -> list[datetime]:
    """Random local instants inside ``window``, pairwise at least ``gap_minutes`` apart.

    The window is cut into ``gap_minutes`` slots and distinct slots are drawn. Second
    offsets are drawn independently but handed out in ascending order, so a later
    slot never gets a smaller offset than an earlier one.
    """
    if count <= 0:
        return []
    rng = rng or _system_rng
    gap = max(1, int(gap_minutes))
    window_start, _ = window.bounds_local(local_day)
    slot_count = (window.end_minutes - window.start_minutes) // gap
    eligible = [
        index
        for index in range(slot_count)
        if not_before_local is None or window_start + timedelta(minutes=index * gap) > not_before_local
    ]
    picked = sorted(rng.sample(eligible, min(count, len(eligible))))
    seconds = sorted(rng.randrange(60) for _ in picked)
    return [
        window_start + timedelta(minutes=index * gap, seconds=second)
        for index, second in zip(picked, seconds)
    ]


def _generate_for_employee(
    db: Session,
    employee: Employee,
    *,
    now_utc: datetime,
    gap_minutes: int,
    rng: random.Random | None,
) -> list[ScheduleItem]:
    now_local = to_local(now_utc)
    today_local = now_local.date()

    apply_staged_target(employee, today_local=today_local)
    if has_schedule_for_day(db, employee_id=employee.id, local_day=today_local):
        return []
    if employee.daily_check_in_target <= 0 or not is_working_day(today_local, employee.work_days):
        return []

    slot_times = build_daily_slot_times(
        employee_window(employee),
        today_local,
        employee.daily_check_in_target,
        gap_minutes=gap_minutes,
        not_before_local=now_local,
        rng=rng,
    )
    items = [
        ScheduleItem(
            employee_id=employee.id,
            local_date=today_local,
            sequence=sequence,
            scheduled_at=to_utc(local_dt),
            status=ScheduleItemStatus.PENDING,
        )
        for sequence, local_dt in enumerate(slot_times)
    ]
    db.add_all(items)
    return items


def generate_daily_schedules(
    now_utc: datetime,
    *,
    db: Session | None = None,
    rng: random.Random | None = None,
) -> list[ScheduleItem]:
    if db is None:
        with SessionLocal() as managed_db:
            return generate_daily_schedules(now_utc, db=managed_db, rng=rng)

    gap_minutes = get_settings().min_check_in_gap_minutes
    employee_ids = list(
        db.scalars(
            select(Employee.id).where(Employee.check_ins_enabled.is_(True)).order_by(Employee.id.asc())
        ).all()
    )

    created: list[ScheduleItem] = []
    for employee_id in employee_ids:
        employee = db.get(Employee, employee_id)
        if employee is None or not employee.check_ins_enabled:
            continue
        items = _generate_for_employee(db, employee, now_utc=now_utc, gap_minutes=gap_minutes, rng=rng)
        try:
            db.commit()
        except IntegrityError:
            # Another runner generated this day first.
            db.rollback()
            logger.info(
                "daily_schedule_already_generated",
                extra={"employee_id": employee_id},
            )
            continue
        created.extend(items)
        if items:
            logger.info(
                "daily_schedule_generated",
                extra={
                    "employee_id": employee_id,
                    "local_date": items[0].local_date.isoformat(),
                    "count": len(items),
                },
            )
    return created
