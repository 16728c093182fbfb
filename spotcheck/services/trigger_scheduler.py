from __future__ import annotations

import logging
import random
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from spotcheck.db import SessionLocal
from spotcheck.models import (
    CheckInRequest,
    CheckInSource,
    Employee,
    ScheduleItem,
    ScheduleItemStatus,
)
from spotcheck.services.checkins import close_expired_pending, get_pending_request, issue_check_in
from spotcheck.services.daily_schedule import effective_daily_target, has_schedule_for_day
from spotcheck.services.next_check_in import (
    compute_next_check_in_at,
    is_usable_hint,
    short_horizon_check_in_at,
)
from spotcheck.services.push_notifications import Notifier, get_notifier
from spotcheck.services.schedule_window import local_today, normalize_ts

logger = logging.getLogger("spotcheck.trigger_scheduler")


def _skip_stale_schedule_items(db: Session, *, today_local: date) -> int:
    skipped = db.execute(
        update(ScheduleItem)
        .where(
            ScheduleItem.status == ScheduleItemStatus.PENDING,
            ScheduleItem.local_date < today_local,
        )
        .values(status=ScheduleItemStatus.SKIPPED)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    return skipped or 0


def _earliest_due_item(db: Session, *, employee_id: int, today_local: date, now_utc: datetime) -> ScheduleItem | None:
    return db.scalar(
        select(ScheduleItem)
        .where(
            ScheduleItem.employee_id == employee_id,
            ScheduleItem.local_date == today_local,
            ScheduleItem.status == ScheduleItemStatus.PENDING,
            ScheduleItem.scheduled_at <= now_utc,
        )
        .order_by(ScheduleItem.scheduled_at.asc(), ScheduleItem.id.asc())
        .limit(1)
    )


def _resolve_fallback_due(
    db: Session,
    employee: Employee,
    *,
    now_utc: datetime,
    today_local: date,
    rng: random.Random | None,
) -> datetime | None:
    if is_usable_hint(employee, employee.next_check_in_at, today_local=today_local):
        return normalize_ts(employee.next_check_in_at)  # type: ignore[arg-type]

    resolved = short_horizon_check_in_at(employee, now_utc, rng=rng)
    if resolved is None:
        resolved = compute_next_check_in_at(employee, now_utc, rng=rng)
    employee.next_check_in_at = resolved
    db.commit()
    return resolved


def _refresh_next_check_in_at(
    db: Session,
    employee: Employee,
    *,
    now_utc: datetime,
    today_local: date,
    rng: random.Random | None,
) -> None:
    if is_usable_hint(employee, employee.next_check_in_at, today_local=today_local):
        return
    computed = compute_next_check_in_at(employee, now_utc, rng=rng)
    if computed != employee.next_check_in_at:
        employee.next_check_in_at = computed
        db.commit()


def _tick_employee(
    db: Session,
    employee: Employee,
    *,
    now_utc: datetime,
    notifier: Notifier,
    rng: random.Random | None,
) -> CheckInRequest | None:
    close_expired_pending(db, employee_id=employee.id, now_utc=now_utc, notifier=notifier)
    today_local = local_today(now_utc)
    due_item = _earliest_due_item(db, employee_id=employee.id, today_local=today_local, now_utc=now_utc)

    due_at: datetime | None = None
    source = CheckInSource.SCHEDULED
    if due_item is not None:
        due_at = normalize_ts(due_item.scheduled_at)
    elif (
        not has_schedule_for_day(db, employee_id=employee.id, local_day=today_local)
        and effective_daily_target(employee, today_local=today_local) > 0
    ):
        due_at = _resolve_fallback_due(db, employee, now_utc=now_utc, today_local=today_local, rng=rng)
        source = CheckInSource.FALLBACK

    is_due = due_at is not None and due_at <= now_utc
    if get_pending_request(db, employee_id=employee.id) is not None:
        if is_due:
            if due_item is not None:
                db.execute(
                    update(ScheduleItem)
                    .where(
                        ScheduleItem.id == due_item.id,
                        ScheduleItem.status == ScheduleItemStatus.PENDING,
                    )
                    .values(status=ScheduleItemStatus.SKIPPED)
                    .execution_options(synchronize_session=False)
                )
            employee.next_check_in_at = compute_next_check_in_at(employee, now_utc, rng=rng)
            db.commit()
            logger.info(
                "checkin_trigger_skipped_pending",
                extra={
                    "employee_id": employee.id,
                    "schedule_item_id": due_item.id if due_item is not None else None,
                },
            )
        return None

    if is_due:
        return issue_check_in(
            db,
            employee,
            now_utc=now_utc,
            source=source,
            notifier=notifier,
            schedule_item_id=due_item.id if due_item is not None else None,
            rng=rng,
        )

    _refresh_next_check_in_at(db, employee, now_utc=now_utc, today_local=today_local, rng=rng)
    return None


def tick(
    now_utc: datetime,
    *,
    db: Session | None = None,
    notifier: Notifier | None = None,
    rng: random.Random | None = None,
) -> list[CheckInRequest]:
    if db is None:
        with SessionLocal() as managed_db:
            return tick(now_utc, db=managed_db, notifier=notifier, rng=rng)

    now_utc = normalize_ts(now_utc)
    notifier = notifier or get_notifier()
    stale = _skip_stale_schedule_items(db, today_local=local_today(now_utc))
    if stale:
        logger.info("schedule_items_stale_skipped", extra={"count": stale})

    employee_ids = list(
        db.scalars(
            select(Employee.id).where(Employee.check_ins_enabled.is_(True)).order_by(Employee.id.asc())
        ).all()
    )
    issued: list[CheckInRequest] = []
    for employee_id in employee_ids:
        employee = db.get(Employee, employee_id)
        if employee is None or not employee.check_ins_enabled:
            continue
        try:
            request = _tick_employee(db, employee, now_utc=now_utc, notifier=notifier, rng=rng)
        except Exception:
            db.rollback()
            logger.exception("checkin_trigger_failed", extra={"employee_id": employee_id})
            continue
        if request is not None:
            issued.append(request)
    return issued
