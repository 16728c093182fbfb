from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from spotcheck.audit import log_audit
from spotcheck.errors import NotFoundError, ValidationError
from spotcheck.models import AuditActorType, Employee
from spotcheck.services.next_check_in import compute_next_check_in_at
from spotcheck.services.schedule_window import is_valid_work_window, local_today

logger = logging.getLogger("spotcheck.employees")

MAX_DAILY_CHECK_IN_TARGET = 20


def get_employee_or_404(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    return employee


def validate_work_days(work_days: list[int]) -> list[int]:
    if not work_days:
        raise ValidationError(code="INVALID_WORK_DAYS", message="Select at least one work day.")
    invalid = [day for day in work_days if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 7]
    if invalid:
        raise ValidationError(
            code="INVALID_WORK_DAYS",
            message="Work days must be ISO weekday numbers between 1 and 7.",
        )
    return sorted(set(work_days))


def validate_daily_target(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_DAILY_CHECK_IN_TARGET:
        raise ValidationError(
            code="INVALID_CHECKIN_TARGET",
            message=f"Daily check-in target must be an integer between 0 and {MAX_DAILY_CHECK_IN_TARGET}.",
        )
    return value


def stage_daily_target(employee: Employee, target: int, *, now_utc: datetime) -> None:
    # Today's schedule was built with the old target; the new one starts tomorrow.
    if target == employee.daily_check_in_target:
        employee.daily_check_in_target_pending = None
        employee.daily_check_in_target_pending_from = None
        return
    employee.daily_check_in_target_pending = target
    employee.daily_check_in_target_pending_from = local_today(now_utc) + timedelta(days=1)


def update_work_schedule(
    db: Session,
    *,
    employee_id: int,
    work_days: list[int],
    work_start_minutes: int,
    work_end_minutes: int,
    daily_check_in_target: int | None,
    now_utc: datetime,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> Employee:
    employee = get_employee_or_404(db, employee_id)
    normalized_days = validate_work_days(work_days)
    if not is_valid_work_window(work_start_minutes, work_end_minutes):
        raise ValidationError(
            code="INVALID_WORK_WINDOW",
            message="Work window must satisfy 0 <= start < end <= 1440.",
        )
    target = validate_daily_target(daily_check_in_target) if daily_check_in_target is not None else None

    employee.work_days = normalized_days
    employee.work_start_minutes = work_start_minutes
    employee.work_end_minutes = work_end_minutes
    if target is not None:
        stage_daily_target(employee, target, now_utc=now_utc)
    employee.next_check_in_at = (
        compute_next_check_in_at(employee, now_utc) if employee.check_ins_enabled else None
    )
    db.commit()
    db.refresh(employee)

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="WORK_SCHEDULE_UPDATED",
        entity_type="employee",
        entity_id=str(employee.id),
        details={
            "work_days": normalized_days,
            "work_start_minutes": work_start_minutes,
            "work_end_minutes": work_end_minutes,
            "daily_check_in_target_pending": employee.daily_check_in_target_pending,
        },
        request_id=request_id,
    )
    return employee


def toggle_check_ins(
    db: Session,
    *,
    employee_id: int,
    now_utc: datetime,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> Employee:
    employee = get_employee_or_404(db, employee_id)
    employee.check_ins_enabled = not employee.check_ins_enabled
    employee.next_check_in_at = (
        compute_next_check_in_at(employee, now_utc) if employee.check_ins_enabled else None
    )
    db.commit()
    db.refresh(employee)

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="CHECKINS_TOGGLED",
        entity_type="employee",
        entity_id=str(employee.id),
        details={"check_ins_enabled": employee.check_ins_enabled},
        request_id=request_id,
    )
    return employee
