from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from spotcheck.audit import log_audit
from spotcheck.errors import NotFoundError, ValidationError
from spotcheck.models import AuditActorType, Employee, Zone, ZoneAssignment

MIN_ZONE_RADIUS_M = 10
MAX_ZONE_RADIUS_M = 5000


def validate_zone_radius(radius_m: int) -> int:
    if isinstance(radius_m, bool) or not isinstance(radius_m, int) or not MIN_ZONE_RADIUS_M <= radius_m <= MAX_ZONE_RADIUS_M:
        raise ValidationError(
            code="INVALID_ZONE_RADIUS",
            message=f"Zone radius must be between {MIN_ZONE_RADIUS_M} and {MAX_ZONE_RADIUS_M} meters.",
        )
    return radius_m


def get_zone_or_404(db: Session, zone_id: int) -> Zone:
    zone = db.get(Zone, zone_id)
    if zone is None:
        raise NotFoundError(code="ZONE_NOT_FOUND", message="Zone not found.")
    return zone


def create_zone(
    db: Session,
    *,
    name: str,
    center_lat: float,
    center_lon: float,
    radius_m: int,
    employee_ids: list[int],
    is_shared: bool = False,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> Zone:
    normalized_name = " ".join((name or "").strip().split())
    if not normalized_name:
        raise ValidationError(code="VALIDATION_ERROR", message="Zone name is required.")
    if not (-90 <= center_lat <= 90 and -180 <= center_lon <= 180):
        raise ValidationError(code="VALIDATION_ERROR", message="Zone center is out of range.")
    validate_zone_radius(radius_m)

    unique_employee_ids = sorted(set(employee_ids))
    if is_shared and not unique_employee_ids:
        raise ValidationError(
            code="VALIDATION_ERROR",
            message="A shared zone needs at least one employee.",
        )
    if not is_shared and len(unique_employee_ids) != 1:
        raise ValidationError(
            code="VALIDATION_ERROR",
            message="An individual zone is assigned to exactly one employee.",
        )

    found_ids = set(db.scalars(select(Employee.id).where(Employee.id.in_(unique_employee_ids))).all())
    missing_ids = [value for value in unique_employee_ids if value not in found_ids]
    if missing_ids:
        raise NotFoundError(
            code="EMPLOYEE_NOT_FOUND",
            message=f"Employees not found: {', '.join(str(value) for value in missing_ids)}",
        )

    zone = Zone(
        name=normalized_name,
        center_lat=center_lat,
        center_lon=center_lon,
        radius_m=radius_m,
        is_shared=is_shared,
    )
    zone.assignments = [ZoneAssignment(employee_id=employee_id) for employee_id in unique_employee_ids]
    db.add(zone)
    db.commit()
    db.refresh(zone)

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="ZONE_CREATED",
        entity_type="zone",
        entity_id=str(zone.id),
        details={"radius_m": radius_m, "is_shared": is_shared, "employee_ids": unique_employee_ids},
        request_id=request_id,
    )
    return zone
