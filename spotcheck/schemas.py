from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from spotcheck.models import CheckInSource, CheckInStatus


class CheckInRequestCreate(BaseModel):
    employee_id: int = Field(ge=1)


class CheckInLocationSubmit(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class CheckInPhotoSubmit(BaseModel):
    photo_base64: str = Field(min_length=1)
    content_type: str = "image/jpeg"


class CheckInResultRead(BaseModel):
    location_lat: float | None = None
    location_lon: float | None = None
    is_within_zone: bool | None = None
    distance_to_zone_m: float | None = None
    nearest_zone_id: int | None = None
    has_photo: bool = False
    location_submitted_at: datetime | None = None
    photo_submitted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CheckInRequestRead(BaseModel):
    id: int
    employee_id: int
    status: CheckInStatus
    source: CheckInSource
    requested_at: datetime
    expires_at: datetime
    completed_at: datetime | None = None
    result: CheckInResultRead | None = None

    model_config = ConfigDict(from_attributes=True)


class CheckInSubmissionResponse(BaseModel):
    ok: bool = True
    check_in_request_id: int
    status: CheckInStatus
    completed: bool
    already_completed: bool = False
    is_within_zone: bool | None = None
    distance_to_zone_m: float | None = None


class WorkScheduleUpdate(BaseModel):
    work_days: list[int]
    work_start_minutes: int
    work_end_minutes: int
    daily_check_in_target: int | None = None


class EmployeeScheduleRead(BaseModel):
    id: int
    full_name: str
    check_ins_enabled: bool
    work_days: list[int]
    work_start_minutes: int
    work_end_minutes: int
    daily_check_in_target: int
    daily_check_in_target_pending: int | None = None
    daily_check_in_target_pending_from: date | None = None
    next_check_in_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ZoneCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    center_lat: float
    center_lon: float
    radius_m: int
    employee_ids: list[int] = Field(default_factory=list)
    is_shared: bool = False


class ZoneRead(BaseModel):
    id: int
    name: str
    center_lat: float
    center_lon: float
    radius_m: int
    is_shared: bool
    employee_ids: list[int] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class PushSubscriptionCreate(BaseModel):
    subscription: dict[str, Any]


class PushSubscriptionResponse(BaseModel):
    ok: bool = True
    subscription_id: int
