from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from spotcheck.audit import log_audit
from spotcheck.errors import ConflictError, ExternalIOError, NotFoundError, ValidationError
from spotcheck.models import (
    AuditActorType,
    CheckInRequest,
    CheckInResult,
    CheckInSource,
    CheckInStatus,
    Employee,
    ScheduleItem,
    ScheduleItemStatus,
    Zone,
    ZoneAssignment,
)
from spotcheck.services.location import GeofenceEvaluation, evaluate_geofence
from spotcheck.services.next_check_in import compute_next_check_in_at
from spotcheck.services.push_notifications import Notifier, get_notifier
from spotcheck.services.schedule_window import normalize_ts
from spotcheck.settings import get_check_in_action_url, get_settings

logger = logging.getLogger("spotcheck.checkins")

CHECK_IN_MESSAGE_TEMPLATE = (
    "Location check: open the link and send your position and a photo within {deadline} minutes."
)


@dataclass(slots=True)
class SubmissionOutcome:
    request: CheckInRequest
    result: CheckInResult | None
    completed: bool
    already_completed: bool = False
    evaluation: GeofenceEvaluation | None = None


def has_location(result: CheckInResult | None) -> bool:
    if result is None or result.location_lat is None or result.location_lon is None:
        return False
    # (0, 0) is the placeholder some clients send before a fix is available.
    return not (result.location_lat == 0 and result.location_lon == 0)


def is_ready_to_complete(result: CheckInResult | None) -> bool:
    return has_location(result) and bool(result is not None and result.photo_ref)


def safe_send_check_in(notifier: Notifier, *, employee_id: int, request_id: int) -> str | None:
    message = CHECK_IN_MESSAGE_TEMPLATE.format(deadline=get_settings().report_deadline_minutes)
    try:
        return notifier.send(employee_id, message, get_check_in_action_url(request_id))
    except ExternalIOError as exc:
        logger.warning(
            "notification_send_failed",
            extra={"employee_id": employee_id, "check_in_request_id": request_id, "error": str(exc)},
        )
    except Exception:
        logger.exception(
            "notification_send_failed",
            extra={"employee_id": employee_id, "check_in_request_id": request_id},
        )
    return None


def safe_retract(notifier: Notifier, *, employee_id: int, handle: str | None, request_id: int) -> bool:
    if not handle:
        return False
    try:
        notifier.retract(employee_id, handle)
    except ExternalIOError as exc:
        logger.warning(
            "notification_retract_failed",
            extra={"employee_id": employee_id, "check_in_request_id": request_id, "error": str(exc)},
        )
        return False
    except Exception:
        logger.exception(
            "notification_retract_failed",
            extra={"employee_id": employee_id, "check_in_request_id": request_id},
        )
        return False
    return True


def _transition(
    db: Session,
    *,
    request_id: int,
    from_status: CheckInStatus,
    to_status: CheckInStatus,
    extra_criteria: tuple[Any, ...] = (),
    values: dict[str, Any] | None = None,
) -> bool:
    """Compare-and-swap on status; True when this caller performed the transition."""
    stmt = (
        update(CheckInRequest)
        .where(
            CheckInRequest.id == request_id,
            CheckInRequest.status == from_status,
            *extra_criteria,
        )
        .values(status=to_status, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def get_pending_request(db: Session, *, employee_id: int) -> CheckInRequest | None:
    return db.scalar(
        select(CheckInRequest).where(
            CheckInRequest.employee_id == employee_id,
            CheckInRequest.status == CheckInStatus.PENDING,
        )
    )


def close_expired_pending(
    db: Session,
    *,
    employee_id: int,
    now_utc: datetime,
    notifier: Notifier,
) -> list[int]:
    """Close the employee's overdue PENDING challenge the same way the sweeper would."""
    now_utc = normalize_ts(now_utc)
    closed: list[tuple[int, str | None]] = []
    for pending in db.scalars(
        select(CheckInRequest).where(
            CheckInRequest.employee_id == employee_id,
            CheckInRequest.status == CheckInStatus.PENDING,
            CheckInRequest.expires_at < now_utc,
        )
    ).all():
        handle = pending.notification_handle
        if _transition(
            db,
            request_id=pending.id,
            from_status=CheckInStatus.PENDING,
            to_status=CheckInStatus.MISSED,
            extra_criteria=(CheckInRequest.expires_at < now_utc,),
        ):
            closed.append((pending.id, handle))
    db.commit()

    for request_id, handle in closed:
        logger.info(
            "checkin_expired",
            extra={"check_in_request_id": request_id, "employee_id": employee_id},
        )
        safe_retract(notifier, employee_id=employee_id, handle=handle, request_id=request_id)
    return [request_id for request_id, _ in closed]


def issue_check_in(
    db: Session,
    employee: Employee,
    *,
    now_utc: datetime,
    source: CheckInSource,
    notifier: Notifier,
    schedule_item_id: int | None = None,
    rng: random.Random | None = None,
) -> CheckInRequest | None:
    """Create a PENDING challenge, consume its schedule item and notify.

    Returns None when another runner already holds a PENDING challenge for the
    employee or already consumed the schedule item.
    """
    now_utc = normalize_ts(now_utc)
    employee_id = employee.id

    if schedule_item_id is not None:
        claimed = db.execute(
            update(ScheduleItem)
            .where(
                ScheduleItem.id == schedule_item_id,
                ScheduleItem.status == ScheduleItemStatus.PENDING,
            )
            .values(status=ScheduleItemStatus.SENT)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            db.rollback()
            return None

    request = CheckInRequest(
        employee_id=employee_id,
        status=CheckInStatus.PENDING,
        source=source,
        requested_at=now_utc,
        expires_at=now_utc + timedelta(minutes=get_settings().report_deadline_minutes),
    )
    db.add(request)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("checkin_issue_conflict", extra={"employee_id": employee_id})
        return None

    if schedule_item_id is not None:
        db.execute(
            update(ScheduleItem)
            .where(ScheduleItem.id == schedule_item_id)
            .values(check_in_request_id=request.id)
            .execution_options(synchronize_session=False)
        )
    employee.next_check_in_at = compute_next_check_in_at(employee, now_utc, rng=rng)
    db.commit()
    request_id = request.id
    logger.info(
        "checkin_issued",
        extra={
            "employee_id": employee_id,
            "check_in_request_id": request_id,
            "source": source.value,
            "schedule_item_id": schedule_item_id,
        },
    )

    handle = safe_send_check_in(notifier, employee_id=employee_id, request_id=request_id)
    if handle is None:
        return request

    db.execute(
        update(CheckInRequest)
        .where(CheckInRequest.id == request_id)
        .values(notification_handle=handle)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(request)
    if request.status != CheckInStatus.PENDING:
        # Closed while the push was in flight; the closer had no handle to retract.
        safe_retract(notifier, employee_id=employee_id, handle=handle, request_id=request_id)
    return request


def request_check_in(
    db: Session,
    *,
    employee_id: int,
    now_utc: datetime,
    notifier: Notifier | None = None,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> CheckInRequest:
    notifier = notifier or get_notifier()
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(code="EMPLOYEE_NOT_FOUND", message="Employee not found.")

    superseded: list[tuple[int, str | None]] = []
    for pending in db.scalars(
        select(CheckInRequest).where(
            CheckInRequest.employee_id == employee_id,
            CheckInRequest.status == CheckInStatus.PENDING,
        )
    ).all():
        handle = pending.notification_handle
        if _transition(db, request_id=pending.id, from_status=CheckInStatus.PENDING, to_status=CheckInStatus.MISSED):
            superseded.append((pending.id, handle))
    db.commit()

    for old_request_id, handle in superseded:
        logger.info(
            "checkin_superseded",
            extra={"employee_id": employee_id, "check_in_request_id": old_request_id},
        )
        safe_retract(notifier, employee_id=employee_id, handle=handle, request_id=old_request_id)

    employee = db.get(Employee, employee_id)
    request = issue_check_in(
        db,
        employee,
        now_utc=now_utc,
        source=CheckInSource.MANUAL,
        notifier=notifier,
    )
    if request is None:
        raise ConflictError(
            code="CHECKIN_CONFLICT",
            message="Another check-in was issued for this employee at the same time.",
        )

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="CHECKIN_REQUESTED",
        entity_type="check_in_request",
        entity_id=str(request.id),
        details={
            "employee_id": employee_id,
            "superseded_request_ids": [item[0] for item in superseded],
        },
        request_id=request_id,
    )
    return request


def _get_request_or_404(db: Session, request_id: int) -> CheckInRequest:
    request = db.get(CheckInRequest, request_id)
    if request is None:
        raise NotFoundError(
            code="CHECKIN_REQUEST_NOT_FOUND",
            message="Check-in request not found.",
        )
    return request


def _ensure_open(request: CheckInRequest, *, now_utc: datetime) -> None:
    # MISSED and PENDING-past-deadline look the same to the caller.
    if request.status == CheckInStatus.MISSED or (
        request.status == CheckInStatus.PENDING and normalize_ts(request.expires_at) < normalize_ts(now_utc)
    ):
        raise ConflictError(
            code="CHECKIN_EXPIRED",
            message="Check-in request has expired.",
        )


def _get_result(db: Session, request_id: int) -> CheckInResult | None:
    return db.scalar(select(CheckInResult).where(CheckInResult.check_in_request_id == request_id))


def _get_or_create_result(db: Session, request_id: int) -> CheckInResult:
    result = _get_result(db, request_id)
    if result is not None:
        return result

    result = CheckInResult(check_in_request_id=request_id)
    db.add(result)
    try:
        db.flush()
    except IntegrityError:
        # A parallel submission created the row first.
        db.rollback()
        result = _get_result(db, request_id)
        if result is None:
            raise
    return result


def employee_zones(db: Session, *, employee_id: int) -> list[Zone]:
    stmt = (
        select(Zone)
        .join(ZoneAssignment, ZoneAssignment.zone_id == Zone.id)
        .where(ZoneAssignment.employee_id == employee_id)
        .order_by(Zone.id.asc())
    )
    return list(db.scalars(stmt).all())


def submit_location(
    db: Session,
    *,
    request_id: int,
    lat: float,
    lon: float,
    now_utc: datetime,
    notifier: Notifier | None = None,
) -> SubmissionOutcome:
    request = _get_request_or_404(db, request_id)
    if request.status == CheckInStatus.COMPLETED:
        return SubmissionOutcome(
            request=request,
            result=_get_result(db, request_id),
            completed=True,
            already_completed=True,
        )
    _ensure_open(request, now_utc=now_utc)
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise ValidationError(code="VALIDATION_ERROR", message="Coordinates are out of range.")

    evaluation = evaluate_geofence(lat, lon, employee_zones(db, employee_id=request.employee_id))
    result = _get_or_create_result(db, request_id)
    result.location_lat = lat
    result.location_lon = lon
    result.is_within_zone = evaluation.is_within_zone
    result.distance_to_zone_m = evaluation.distance_to_zone_m
    result.nearest_zone_id = evaluation.nearest_zone_id
    result.location_submitted_at = normalize_ts(now_utc)
    db.commit()
    logger.info(
        "checkin_location_submitted",
        extra={
            "check_in_request_id": request_id,
            "employee_id": request.employee_id,
            "is_within_zone": evaluation.is_within_zone,
            "distance_to_zone_m": evaluation.distance_to_zone_m,
        },
    )

    completed = finalize_if_ready(db, request_id=request_id, now_utc=now_utc, notifier=notifier)
    db.refresh(result)
    return SubmissionOutcome(
        request=_get_request_or_404(db, request_id),
        result=result,
        completed=completed,
        evaluation=evaluation,
    )


def check_photo_submission(db: Session, *, request_id: int, now_utc: datetime) -> SubmissionOutcome | None:
    """Acknowledgement for a COMPLETED request, None while it still accepts a photo.

    Raises for unknown and closed requests so callers can refuse before storing bytes.
    """
    request = _get_request_or_404(db, request_id)
    if request.status == CheckInStatus.COMPLETED:
        # Client retries after completion are acknowledged, not rejected.
        return SubmissionOutcome(
            request=request,
            result=_get_result(db, request_id),
            completed=True,
            already_completed=True,
        )
    _ensure_open(request, now_utc=now_utc)
    return None


def submit_photo(
    db: Session,
    *,
    request_id: int,
    photo_ref: str,
    now_utc: datetime,
    notifier: Notifier | None = None,
) -> SubmissionOutcome:
    acknowledged = check_photo_submission(db, request_id=request_id, now_utc=now_utc)
    if acknowledged is not None:
        return acknowledged
    request = _get_request_or_404(db, request_id)
    if not (photo_ref or "").strip():
        raise ValidationError(code="VALIDATION_ERROR", message="Photo reference is required.")

    result = _get_or_create_result(db, request_id)
    result.photo_ref = photo_ref
    result.photo_submitted_at = normalize_ts(now_utc)
    db.commit()
    logger.info(
        "checkin_photo_submitted",
        extra={"check_in_request_id": request_id, "employee_id": request.employee_id},
    )

    completed = finalize_if_ready(db, request_id=request_id, now_utc=now_utc, notifier=notifier)
    db.refresh(result)
    return SubmissionOutcome(
        request=_get_request_or_404(db, request_id),
        result=result,
        completed=completed,
    )


def finalize_if_ready(
    db: Session,
    *,
    request_id: int,
    now_utc: datetime,
    notifier: Notifier | None = None,
) -> bool:
    if not is_ready_to_complete(_get_result(db, request_id)):
        return False

    now_utc = normalize_ts(now_utc)
    completed = _transition(
        db,
        request_id=request_id,
        from_status=CheckInStatus.PENDING,
        to_status=CheckInStatus.COMPLETED,
        extra_criteria=(CheckInRequest.expires_at >= now_utc,),
        values={"completed_at": now_utc},
    )
    if not completed:
        db.rollback()
        return False
    db.commit()

    request = _get_request_or_404(db, request_id)
    logger.info(
        "checkin_completed",
        extra={"check_in_request_id": request_id, "employee_id": request.employee_id},
    )
    safe_retract(
        notifier or get_notifier(),
        employee_id=request.employee_id,
        handle=request.notification_handle,
        request_id=request_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.SYSTEM,
        actor_id=str(request.employee_id),
        action="CHECKIN_COMPLETED",
        entity_type="check_in_request",
        entity_id=str(request_id),
        details={"source": request.source.value},
    )
    return True


def get_check_in_photo_ref(db: Session, *, request_id: int) -> str:
    _get_request_or_404(db, request_id)
    result = _get_result(db, request_id)
    if result is None or not result.photo_ref:
        raise NotFoundError(code="PHOTO_NOT_FOUND", message="No photo was submitted for this check-in.")
    return result.photo_ref


def list_check_ins(
    db: Session,
    *,
    employee_id: int | None = None,
    status: CheckInStatus | None = None,
    limit: int = 50,
) -> list[CheckInRequest]:
    stmt = (
        select(CheckInRequest)
        .options(selectinload(CheckInRequest.result), selectinload(CheckInRequest.employee))
        .order_by(CheckInRequest.requested_at.desc(), CheckInRequest.id.desc())
        .limit(max(1, min(limit, 500)))
    )
    if employee_id is not None:
        stmt = stmt.where(CheckInRequest.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(CheckInRequest.status == status)
    return list(db.scalars(stmt).all())
