from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pywebpush import WebPushException, webpush
from sqlalchemy import select
from sqlalchemy.orm import Session

from spotcheck.db import SessionLocal
from spotcheck.errors import ExternalIOError, NotFoundError, ValidationError
from spotcheck.models import Employee, PushSubscription
from spotcheck.settings import get_settings, is_push_enabled

logger = logging.getLogger("spotcheck.push")

CHECK_IN_PUSH_TITLE = "Check-in required"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notifier:
    """Delivers a check-in challenge to an employee and can withdraw it later."""

    def send(self, employee_id: int, message: str, action_url: str) -> str:
        raise NotImplementedError

    def retract(self, employee_id: int, handle: str) -> None:
        raise NotImplementedError


def _parse_subscription_payload(subscription: dict[str, Any]) -> tuple[str, str, str]:
    endpoint = str(subscription.get("endpoint") or "").strip()
    keys = subscription.get("keys")
    if not isinstance(keys, dict):
        raise ValidationError(
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Subscription keys are missing.",
        )

    p256dh = str(keys.get("p256dh") or "").strip()
    auth = str(keys.get("auth") or "").strip()
    if not endpoint or not p256dh or not auth:
        raise ValidationError(
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Subscription payload is incomplete.",
        )
    return endpoint, p256dh, auth


def upsert_push_subscription(
    db: Session,
    *,
    employee_id: int,
    subscription: dict[str, Any],
) -> PushSubscription:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    endpoint, p256dh, auth = _parse_subscription_payload(subscription)

    row = db.scalar(select(PushSubscription).where(PushSubscription.endpoint == endpoint))
    if row is None:
        row = PushSubscription(employee_id=employee.id, endpoint=endpoint, p256dh=p256dh, auth=auth)
        db.add(row)
    else:
        row.employee_id = employee.id
        row.p256dh = p256dh
        row.auth = auth
    row.is_active = True
    row.last_error = None
    row.last_seen_at = _utcnow()
    db.commit()
    db.refresh(row)
    return row


def list_active_push_subscriptions(db: Session, *, employee_id: int) -> list[PushSubscription]:
    stmt = (
        select(PushSubscription)
        .where(
            PushSubscription.employee_id == employee_id,
            PushSubscription.is_active.is_(True),
        )
        .order_by(PushSubscription.id.desc())
    )
    return list(db.scalars(stmt).all())


def _send_to_subscription_row(row: PushSubscription, payload: dict[str, Any]) -> tuple[bool, str | None, int | None]:
    settings = get_settings()
    try:
        webpush(
            subscription_info={
                "endpoint": row.endpoint,
                "keys": {
                    "p256dh": row.p256dh,
                    "auth": row.auth,
                },
            },
            data=json.dumps(payload),
            vapid_private_key=settings.push_vapid_private_key,
            vapid_claims={"sub": settings.push_vapid_subject},
            ttl=60 * max(1, settings.report_deadline_minutes),
        )
        return True, None, None
    except WebPushException as exc:
        status_code: int | None = None
        if exc.response is not None:
            status_code = exc.response.status_code
        return False, str(exc), status_code


def send_push_to_employee(db: Session, *, employee_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    subscriptions = list_active_push_subscriptions(db, employee_id=employee_id)
    sent = 0
    failed = 0
    deactivated = 0
    now_utc = _utcnow()

    for row in subscriptions:
        ok, error_text, status_code = _send_to_subscription_row(row, payload)
        row.last_seen_at = now_utc
        if ok:
            sent += 1
            row.last_error = None
            continue

        failed += 1
        row.last_error = error_text
        if status_code in {404, 410} and row.is_active:
            row.is_active = False
            deactivated += 1

    db.commit()
    return {
        "total_targets": len(subscriptions),
        "sent": sent,
        "failed": failed,
        "deactivated": deactivated,
    }


class WebPushNotifier(Notifier):
    """Web push delivery; the handle doubles as the notification tag on the device."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def _deliver(self, employee_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        if not is_push_enabled():
            raise ExternalIOError("push", "push_disabled")
        with self._session_factory() as db:
            summary = send_push_to_employee(db, employee_id=employee_id, payload=payload)
        if summary["sent"] <= 0:
            raise ExternalIOError(
                "push",
                f"delivery failed (targets={summary['total_targets']}, failed={summary['failed']})",
            )
        return summary

    def send(self, employee_id: int, message: str, action_url: str) -> str:
        handle = f"chk-{secrets.token_urlsafe(12)}"
        summary = self._deliver(
            employee_id,
            {
                "type": "check_in",
                "title": CHECK_IN_PUSH_TITLE,
                "body": message,
                "tag": handle,
                "data": {"action_url": action_url},
                "ts_utc": _utcnow().isoformat(),
            },
        )
        logger.info(
            "push_check_in_sent",
            extra={"employee_id": employee_id, "handle": handle, "sent": summary["sent"]},
        )
        return handle

    def retract(self, employee_id: int, handle: str) -> None:
        self._deliver(
            employee_id,
            {
                "type": "retract",
                "tag": handle,
                "ts_utc": _utcnow().isoformat(),
            },
        )


def get_notifier() -> Notifier:
    return WebPushNotifier()
