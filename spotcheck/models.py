from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spotcheck.db import Base

JsonType = JSON().with_variant(JSONB(), "postgresql")

DEFAULT_WORK_DAYS = [1, 2, 3, 4, 5]
DEFAULT_WORK_START_MINUTES = 540
DEFAULT_WORK_END_MINUTES = 1080


class ScheduleItemStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    SKIPPED = "SKIPPED"


class CheckInStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    MISSED = "MISSED"


class CheckInSource(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    FALLBACK = "FALLBACK"
    MANUAL = "MANUAL"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    check_ins_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    work_days: Mapped[list[int]] = mapped_column(
        JsonType,
        nullable=False,
        default=lambda: list(DEFAULT_WORK_DAYS),
    )
    work_start_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_WORK_START_MINUTES,
        server_default=text(str(DEFAULT_WORK_START_MINUTES)),
    )
    work_end_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_WORK_END_MINUTES,
        server_default=text(str(DEFAULT_WORK_END_MINUTES)),
    )
    daily_check_in_target: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default=text("3"))
    daily_check_in_target_pending: Mapped[int | None] = mapped_column(Integer, nullable=True)
    daily_check_in_target_pending_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    zone_assignments: Mapped[list[ZoneAssignment]] = relationship(back_populates="employee")
    schedule_items: Mapped[list[ScheduleItem]] = relationship(back_populates="employee")
    check_in_requests: Mapped[list[CheckInRequest]] = relationship(back_populates="employee")
    push_subscriptions: Mapped[list[PushSubscription]] = relationship(back_populates="employee")


class Zone(Base):
    __tablename__ = "zones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    center_lat: Mapped[float] = mapped_column(Float, nullable=False)
    center_lon: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default=text("100"))
    is_shared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    assignments: Mapped[list[ZoneAssignment]] = relationship(
        back_populates="zone",
        cascade="all, delete-orphan",
    )

    @property
    def employee_ids(self) -> list[int]:
        return sorted(assignment.employee_id for assignment in self.assignments)


class ZoneAssignment(Base):
    __tablename__ = "zone_assignments"
    __table_args__ = (
        UniqueConstraint("employee_id", "zone_id", name="uq_zone_assignments_employee_zone"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    zone_id: Mapped[int] = mapped_column(
        ForeignKey("zones.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    employee: Mapped[Employee] = relationship(back_populates="zone_assignments")
    zone: Mapped[Zone] = relationship(back_populates="assignments")


class ScheduleItem(Base):
    __tablename__ = "schedule_items"
    __table_args__ = (
        UniqueConstraint("employee_id", "local_date", "sequence", name="uq_schedule_items_employee_day_sequence"),
        Index("ix_schedule_items_status_scheduled_at", "status", "scheduled_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    local_date: Mapped[date] = mapped_column(Date, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ScheduleItemStatus] = mapped_column(
        Enum(ScheduleItemStatus, name="schedule_item_status"),
        nullable=False,
        default=ScheduleItemStatus.PENDING,
    )
    check_in_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("check_in_requests.id", ondelete="SET NULL"),
        nullable=True,
    )

    employee: Mapped[Employee] = relationship(back_populates="schedule_items")


class CheckInRequest(Base):
    __tablename__ = "check_in_requests"
    __table_args__ = (
        Index(
            "uq_check_in_requests_one_pending_per_employee",
            "employee_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_check_in_requests_status_expires_at", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[CheckInStatus] = mapped_column(
        Enum(CheckInStatus, name="check_in_status"),
        nullable=False,
        default=CheckInStatus.PENDING,
    )
    source: Mapped[CheckInSource] = mapped_column(
        Enum(CheckInSource, name="check_in_source"),
        nullable=False,
        default=CheckInSource.SCHEDULED,
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notification_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="check_in_requests")
    result: Mapped[CheckInResult | None] = relationship(back_populates="check_in_request", uselist=False)


class CheckInResult(Base):
    __tablename__ = "check_in_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    check_in_request_id: Mapped[int] = mapped_column(
        ForeignKey("check_in_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_within_zone: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    distance_to_zone_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    nearest_zone_id: Mapped[int | None] = mapped_column(
        ForeignKey("zones.id", ondelete="SET NULL"),
        nullable=True,
    )
    photo_ref: Mapped[str | None] = mapped_column(String(512), nullable=True)
    location_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    photo_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    check_in_request: Mapped[CheckInRequest] = relationship(back_populates="result")

    @property
    def has_photo(self) -> bool:
        return bool(self.photo_ref)


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    endpoint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(Text, nullable=False)
    auth: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="push_subscriptions")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
