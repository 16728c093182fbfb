from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from spotcheck.db import get_db
from spotcheck.errors import ApiError, ExternalIOError
from spotcheck.models import CheckInStatus
from spotcheck.schemas import (
    CheckInRequestRead,
    EmployeeScheduleRead,
    WorkScheduleUpdate,
    ZoneCreate,
    ZoneRead,
)
from spotcheck.services.checkins import get_check_in_photo_ref, list_check_ins
from spotcheck.services.employees import toggle_check_ins, update_work_schedule
from spotcheck.services.photo_store import PhotoStore, content_type_for_ref, get_photo_store
from spotcheck.services.zones import create_zone, get_zone_or_404

router = APIRouter(tags=["admin"])


@router.get("/api/check-ins", response_model=list[CheckInRequestRead])
def get_check_ins(
    employee_id: int | None = Query(default=None, ge=1),
    check_in_status: CheckInStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[CheckInRequestRead]:
    rows = list_check_ins(db, employee_id=employee_id, status=check_in_status, limit=limit)
    return [CheckInRequestRead.model_validate(row) for row in rows]


@router.get("/api/check-ins/{check_in_request_id}/photo")
def get_check_in_photo(
    check_in_request_id: int,
    db: Session = Depends(get_db),
    photo_store: PhotoStore = Depends(get_photo_store),
) -> Response:
    photo_ref = get_check_in_photo_ref(db, request_id=check_in_request_id)
    try:
        data = photo_store.load(photo_ref)
    except ExternalIOError as exc:
        raise ApiError(
            status_code=502,
            code="PHOTO_STORE_UNAVAILABLE",
            message="Photo could not be read.",
        ) from exc
    return Response(content=data, media_type=content_type_for_ref(photo_ref))


@router.put("/api/employees/{employee_id}/work-schedule", response_model=EmployeeScheduleRead)
def put_work_schedule(
    employee_id: int,
    payload: WorkScheduleUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> EmployeeScheduleRead:
    request.state.actor = "admin"
    request.state.employee_id = employee_id
    employee = update_work_schedule(
        db,
        employee_id=employee_id,
        work_days=payload.work_days,
        work_start_minutes=payload.work_start_minutes,
        work_end_minutes=payload.work_end_minutes,
        daily_check_in_target=payload.daily_check_in_target,
        now_utc=datetime.now(timezone.utc),
        request_id=getattr(request.state, "request_id", None),
    )
    return EmployeeScheduleRead.model_validate(employee)


@router.put("/api/employees/{employee_id}/toggle-checkins", response_model=EmployeeScheduleRead)
def put_toggle_check_ins(
    employee_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> EmployeeScheduleRead:
    request.state.actor = "admin"
    request.state.employee_id = employee_id
    employee = toggle_check_ins(
        db,
        employee_id=employee_id,
        now_utc=datetime.now(timezone.utc),
        request_id=getattr(request.state, "request_id", None),
    )
    return EmployeeScheduleRead.model_validate(employee)


@router.post("/api/zones", response_model=ZoneRead, status_code=status.HTTP_201_CREATED)
def post_zone(
    payload: ZoneCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> ZoneRead:
    request.state.actor = "admin"
    zone = create_zone(
        db,
        name=payload.name,
        center_lat=payload.center_lat,
        center_lon=payload.center_lon,
        radius_m=payload.radius_m,
        employee_ids=payload.employee_ids,
        is_shared=payload.is_shared,
        request_id=getattr(request.state, "request_id", None),
    )
    return ZoneRead.model_validate(zone)


@router.get("/api/zones/{zone_id}", response_model=ZoneRead)
def get_zone(zone_id: int, db: Session = Depends(get_db)) -> ZoneRead:
    return ZoneRead.model_validate(get_zone_or_404(db, zone_id))
