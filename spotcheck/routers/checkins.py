from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from spotcheck.db import get_db
from spotcheck.errors import ApiError, ExternalIOError
from spotcheck.schemas import (
    CheckInLocationSubmit,
    CheckInPhotoSubmit,
    CheckInRequestCreate,
    CheckInRequestRead,
    CheckInSubmissionResponse,
    PushSubscriptionCreate,
    PushSubscriptionResponse,
)
from spotcheck.services.checkins import (
    SubmissionOutcome,
    check_photo_submission,
    request_check_in,
    submit_location,
    submit_photo,
)
from spotcheck.services.photo_store import PhotoStore, decode_photo_payload, discard_photo, get_photo_store
from spotcheck.services.push_notifications import Notifier, get_notifier, upsert_push_subscription

router = APIRouter(tags=["check-ins"])


def _submission_response(outcome: SubmissionOutcome) -> CheckInSubmissionResponse:
    result = outcome.result
    return CheckInSubmissionResponse(
        check_in_request_id=outcome.request.id,
        status=outcome.request.status,
        completed=outcome.completed,
        already_completed=outcome.already_completed,
        is_within_zone=result.is_within_zone if result is not None else None,
        distance_to_zone_m=result.distance_to_zone_m if result is not None else None,
    )


@router.post(
    "/api/check-ins/request",
    response_model=CheckInRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def create_check_in_request(
    payload: CheckInRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> CheckInRequestRead:
    request.state.actor = "admin"
    check_in = request_check_in(
        db,
        employee_id=payload.employee_id,
        now_utc=datetime.now(timezone.utc),
        notifier=notifier,
        request_id=getattr(request.state, "request_id", None),
    )
    request.state.employee_id = check_in.employee_id
    return CheckInRequestRead.model_validate(check_in)


@router.post("/api/check-ins/{check_in_request_id}/location", response_model=CheckInSubmissionResponse)
def post_check_in_location(
    check_in_request_id: int,
    payload: CheckInLocationSubmit,
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> CheckInSubmissionResponse:
    request.state.actor = "employee"
    outcome = submit_location(
        db,
        request_id=check_in_request_id,
        lat=payload.latitude,
        lon=payload.longitude,
        now_utc=datetime.now(timezone.utc),
        notifier=notifier,
    )
    request.state.employee_id = outcome.request.employee_id
    return _submission_response(outcome)


@router.post("/api/check-ins/{check_in_request_id}/photo", response_model=CheckInSubmissionResponse)
def post_check_in_photo(
    check_in_request_id: int,
    payload: CheckInPhotoSubmit,
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    photo_store: PhotoStore = Depends(get_photo_store),
) -> CheckInSubmissionResponse:
    request.state.actor = "employee"
    data = decode_photo_payload(payload.photo_base64)
    now_utc = datetime.now(timezone.utc)
    acknowledged = check_photo_submission(db, request_id=check_in_request_id, now_utc=now_utc)
    if acknowledged is not None:
        request.state.employee_id = acknowledged.request.employee_id
        return _submission_response(acknowledged)

    try:
        photo_ref = photo_store.save(data, content_type=payload.content_type)
    except ExternalIOError as exc:
        raise ApiError(
            status_code=502,
            code="PHOTO_STORE_UNAVAILABLE",
            message="Photo could not be stored, please retry.",
        ) from exc

    try:
        outcome = submit_photo(
            db,
            request_id=check_in_request_id,
            photo_ref=photo_ref,
            now_utc=now_utc,
            notifier=notifier,
        )
    except ApiError:
        discard_photo(photo_store, photo_ref)
        raise
    if outcome.already_completed:
        discard_photo(photo_store, photo_ref)
    request.state.employee_id = outcome.request.employee_id
    return _submission_response(outcome)


@router.post("/api/employees/{employee_id}/push-subscription", response_model=PushSubscriptionResponse)
def register_push_subscription(
    employee_id: int,
    payload: PushSubscriptionCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> PushSubscriptionResponse:
    request.state.actor = "employee"
    request.state.employee_id = employee_id
    row = upsert_push_subscription(db, employee_id=employee_id, subscription=payload.subscription)
    return PushSubscriptionResponse(subscription_id=row.id)
