from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from spotcheck.db import SessionLocal
from spotcheck.models import CheckInRequest, CheckInStatus
from spotcheck.services.checkins import safe_retract
from spotcheck.services.push_notifications import Notifier, get_notifier
from spotcheck.services.schedule_window import normalize_ts

logger = logging.getLogger("spotcheck.expiry_sweeper")


def sweep_expired(
    now_utc: datetime,
    *,
    db: Session | None = None,
    notifier: Notifier | None = None,
) -> list[int]:
    """Close overdue PENDING challenges as MISSED and retract their notifications.

    One conditional UPDATE claims the rows, so a request is retracted only by the
    runner whose statement actually moved it out of PENDING.
    """
    if db is None:
        with SessionLocal() as managed_db:
            return sweep_expired(now_utc, db=managed_db, notifier=notifier)

    now_utc = normalize_ts(now_utc)
    rows = db.execute(
        update(CheckInRequest)
        .where(
            CheckInRequest.status == CheckInStatus.PENDING,
            CheckInRequest.expires_at < now_utc,
        )
        .values(status=CheckInStatus.MISSED)
        .returning(
            CheckInRequest.id,
            CheckInRequest.employee_id,
            CheckInRequest.notification_handle,
        )
        .execution_options(synchronize_session=False)
    ).all()
    db.commit()
    if not rows:
        return []

    notifier = notifier or get_notifier()
    expired_ids: list[int] = []
    for request_id, employee_id, handle in rows:
        expired_ids.append(request_id)
        logger.info(
            "checkin_expired",
            extra={"check_in_request_id": request_id, "employee_id": employee_id},
        )
        safe_retract(notifier, employee_id=employee_id, handle=handle, request_id=request_id)
    return expired_ids
