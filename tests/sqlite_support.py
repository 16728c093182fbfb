from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spotcheck import models  # noqa: F401
from spotcheck.db import Base
from spotcheck.errors import ExternalIOError
from spotcheck.models import Employee, Zone, ZoneAssignment
from spotcheck.services.push_notifications import Notifier


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def make_session_factory():  # type: ignore[no-untyped-def]
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def add_employee(db: Session, **overrides: object) -> Employee:
    values: dict[str, object] = {
        "full_name": "Test Employee",
        "check_ins_enabled": True,
        "work_days": [1, 2, 3, 4, 5],
        "work_start_minutes": 540,
        "work_end_minutes": 1080,
        "daily_check_in_target": 3,
    }
    values.update(overrides)
    employee = Employee(**values)
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def add_zone(
    db: Session,
    *,
    employee_ids: list[int],
    center_lat: float = 55.7558,
    center_lon: float = 37.6173,
    radius_m: int = 100,
) -> Zone:
    zone = Zone(
        name="Office",
        center_lat=center_lat,
        center_lon=center_lon,
        radius_m=radius_m,
        is_shared=len(employee_ids) > 1,
    )
    zone.assignments = [ZoneAssignment(employee_id=employee_id) for employee_id in employee_ids]
    db.add(zone)
    db.commit()
    db.refresh(zone)
    return zone


class RecordingNotifier(Notifier):
    def __init__(self, *, fail_send: bool = False, fail_retract: bool = False) -> None:
        self.fail_send = fail_send
        self.fail_retract = fail_retract
        self.sent: list[tuple[int, str, str, str]] = []
        self.retracted: list[tuple[int, str]] = []

    def send(self, employee_id: int, message: str, action_url: str) -> str:
        if self.fail_send:
            raise ExternalIOError("push", "no_active_subscription")
        handle = f"handle-{len(self.sent) + 1}"
        self.sent.append((employee_id, message, action_url, handle))
        return handle

    def retract(self, employee_id: int, handle: str) -> None:
        if self.fail_retract:
            raise ExternalIOError("push", "retract_failed")
        self.retracted.append((employee_id, handle))
