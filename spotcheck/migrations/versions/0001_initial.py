"""Initial check-in schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

schedule_item_status = postgresql.ENUM(
    "PENDING",
    "SENT",
    "SKIPPED",
    name="schedule_item_status",
    create_type=False,
)
check_in_status = postgresql.ENUM(
    "PENDING",
    "COMPLETED",
    "MISSED",
    name="check_in_status",
    create_type=False,
)
check_in_source = postgresql.ENUM(
    "SCHEDULED",
    "FALLBACK",
    "MANUAL",
    name="check_in_source",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    schedule_item_status.create(bind, checkfirst=True)
    check_in_status.create(bind, checkfirst=True)
    check_in_source.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("check_ins_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "work_days",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[1, 2, 3, 4, 5]'::jsonb"),
        ),
        sa.Column("work_start_minutes", sa.Integer(), nullable=False, server_default=sa.text("540")),
        sa.Column("work_end_minutes", sa.Integer(), nullable=False, server_default=sa.text("1080")),
        sa.Column("daily_check_in_target", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("daily_check_in_target_pending", sa.Integer(), nullable=True),
        sa.Column("daily_check_in_target_pending_from", sa.Date(), nullable=True),
        sa.Column("next_check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "zones",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("center_lat", sa.Float(), nullable=False),
        sa.Column("center_lon", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("is_shared", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "zone_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("zone_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["zone_id"], ["zones.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "zone_id", name="uq_zone_assignments_employee_zone"),
    )
    op.create_index("ix_zone_assignments_employee_id", "zone_assignments", ["employee_id"])
    op.create_index("ix_zone_assignments_zone_id", "zone_assignments", ["zone_id"])

    op.create_table(
        "check_in_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("status", check_in_status, nullable=False),
        sa.Column("source", check_in_source, nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notification_handle", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_check_in_requests_employee_id", "check_in_requests", ["employee_id"])
    op.create_index(
        "ix_check_in_requests_status_expires_at",
        "check_in_requests",
        ["status", "expires_at"],
    )
    op.create_index(
        "uq_check_in_requests_one_pending_per_employee",
        "check_in_requests",
        ["employee_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "check_in_results",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("check_in_request_id", sa.Integer(), nullable=False),
        sa.Column("location_lat", sa.Float(), nullable=True),
        sa.Column("location_lon", sa.Float(), nullable=True),
        sa.Column("is_within_zone", sa.Boolean(), nullable=True),
        sa.Column("distance_to_zone_m", sa.Float(), nullable=True),
        sa.Column("nearest_zone_id", sa.Integer(), nullable=True),
        sa.Column("photo_ref", sa.String(length=512), nullable=True),
        sa.Column("location_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("photo_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["check_in_request_id"], ["check_in_requests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["nearest_zone_id"], ["zones.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("check_in_request_id", name="uq_check_in_results_check_in_request_id"),
    )

    op.create_table(
        "schedule_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("local_date", sa.Date(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", schedule_item_status, nullable=False),
        sa.Column("check_in_request_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["check_in_request_id"], ["check_in_requests.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "employee_id",
            "local_date",
            "sequence",
            name="uq_schedule_items_employee_day_sequence",
        ),
    )
    op.create_index("ix_schedule_items_employee_id", "schedule_items", ["employee_id"])
    op.create_index(
        "ix_schedule_items_status_scheduled_at",
        "schedule_items",
        ["status", "scheduled_at"],
    )

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.Text(), nullable=False),
        sa.Column("auth", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
    )
    op.create_index("ix_push_subscriptions_employee_id", "push_subscriptions", ["employee_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_push_subscriptions_employee_id", table_name="push_subscriptions")
    op.drop_table("push_subscriptions")
    op.drop_index("ix_schedule_items_status_scheduled_at", table_name="schedule_items")
    op.drop_index("ix_schedule_items_employee_id", table_name="schedule_items")
    op.drop_table("schedule_items")
    op.drop_table("check_in_results")
    op.drop_index("uq_check_in_requests_one_pending_per_employee", table_name="check_in_requests")
    op.drop_index("ix_check_in_requests_status_expires_at", table_name="check_in_requests")
    op.drop_index("ix_check_in_requests_employee_id", table_name="check_in_requests")
    op.drop_table("check_in_requests")
    op.drop_index("ix_zone_assignments_zone_id", table_name="zone_assignments")
    op.drop_index("ix_zone_assignments_employee_id", table_name="zone_assignments")
    op.drop_table("zone_assignments")
    op.drop_table("zones")
    op.drop_table("employees")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    check_in_source.drop(bind, checkfirst=True)
    check_in_status.drop(bind, checkfirst=True)
    schedule_item_status.drop(bind, checkfirst=True)
