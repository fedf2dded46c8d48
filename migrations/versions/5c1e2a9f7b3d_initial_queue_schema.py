"""initial queue schema

Revision ID: 5c1e2a9f7b3d
Revises:
Create Date: 2026-10-18 09:12:41.532118

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e2a9f7b3d"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QUEUE_STATUSES = ("waiting", "in_progress", "absent", "completed", "no_show")
APPOINTMENT_TYPES = (
    "consultation",
    "follow_up",
    "emergency",
    "procedure",
    "vaccination",
    "screening",
)


def _partial(condition: str) -> dict[str, sa.TextClause]:
    return {
        "sqlite_where": sa.text(condition),
        "postgresql_where": sa.text(condition),
    }


def upgrade() -> None:
    """Create clinic, patient, queue, audit and notification tables."""
    op.create_table(
        "clinic",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("owner_user_id", sa.String(length=64), nullable=False),
        sa.Column("preferred_language", sa.String(length=8), nullable=False),
        sa.Column("absent_grace_period_minutes", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_clinic_owner_user_id", "clinic", ["owner_user_id"])

    op.create_table(
        "clinic_staff",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinic.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("clinic_id", "user_id", name="uq_clinic_staff_user"),
    )
    op.create_index("ix_clinic_staff_user_id", "clinic_staff", ["user_id"])

    op.create_table(
        "patient",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "guest_patient",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinic.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "patient_clinic_history",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("patient_id", sa.String(length=36), nullable=True),
        sa.Column("guest_patient_id", sa.String(length=36), nullable=True),
        sa.Column("total_visits", sa.Integer(), nullable=False),
        sa.Column("completed_visits", sa.Integer(), nullable=False),
        sa.Column("last_visit_date", sa.Date(), nullable=True),
        sa.Column("last_entry_id", sa.String(length=36), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinic.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patient.id"]),
        sa.ForeignKeyConstraint(["guest_patient_id"], ["guest_patient.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("clinic_id", "patient_id", name="uq_history_patient"),
        sa.UniqueConstraint("clinic_id", "guest_patient_id", name="uq_history_guest"),
    )

    op.create_table(
        "queue_entry",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("patient_id", sa.String(length=36), nullable=True),
        sa.Column("guest_patient_id", sa.String(length=36), nullable=True),
        sa.Column(
            "appointment_type",
            sa.Enum(*APPOINTMENT_TYPES, name="appointment_type", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(*QUEUE_STATUSES, name="queue_status", native_enum=False),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("original_position", sa.Integer(), nullable=True),
        sa.Column("skip_count", sa.Integer(), nullable=False),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("called_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(patient_id IS NULL) <> (guest_patient_id IS NULL)",
            name="ck_queue_entry_one_patient_ref",
        ),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinic.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patient.id"]),
        sa.ForeignKeyConstraint(["guest_patient_id"], ["guest_patient.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_queue_entry_clinic_day", "queue_entry", ["clinic_id", "service_date"])
    op.create_index(
        "uq_queue_entry_waiting_position",
        "queue_entry",
        ["clinic_id", "service_date", "position"],
        unique=True,
        **_partial("status = 'waiting'"),
    )
    op.create_index(
        "uq_queue_entry_single_in_progress",
        "queue_entry",
        ["clinic_id", "service_date"],
        unique=True,
        **_partial("status = 'in_progress'"),
    )

    op.create_table(
        "absence_record",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("entry_id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("marked_by", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("previous_position", sa.Integer(), nullable=True),
        sa.Column("marked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("grace_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("new_position", sa.Integer(), nullable=True),
        sa.Column("closed_reason", sa.String(length=16), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["entry_id"], ["queue_entry.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_absence_record_open_per_entry",
        "absence_record",
        ["entry_id"],
        unique=True,
        **_partial("closed_at IS NULL"),
    )

    op.create_table(
        "day_closure",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("performed_by", sa.String(length=64), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("total_entries", sa.Integer(), nullable=False),
        sa.Column("waiting_count", sa.Integer(), nullable=False),
        sa.Column("absent_count", sa.Integer(), nullable=False),
        sa.Column("in_progress_count", sa.Integer(), nullable=False),
        sa.Column("completed_count", sa.Integer(), nullable=False),
        sa.Column("marked_no_show_ids", sa.JSON(), nullable=False),
        sa.Column("marked_completed_ids", sa.JSON(), nullable=False),
        sa.Column("reopened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reopened_by", sa.String(length=64), nullable=True),
        sa.Column("reopen_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinic.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_day_closure_active",
        "day_closure",
        ["clinic_id", "service_date"],
        unique=True,
        **_partial("reopened_at IS NULL"),
    )

    op.create_table(
        "queue_override",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("entry_id", sa.String(length=36), nullable=True),
        sa.Column("action_type", sa.String(length=32), nullable=False),
        sa.Column("performed_by", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("previous_position", sa.Integer(), nullable=True),
        sa.Column("new_position", sa.Integer(), nullable=True),
        sa.Column("previous_status", sa.String(length=16), nullable=True),
        sa.Column("new_status", sa.String(length=16), nullable=True),
        sa.Column("skipped_entry_ids", sa.JSON(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index(
        "ix_queue_override_clinic_created",
        "queue_override",
        ["clinic_id", "created_at"],
    )
    op.create_index("ix_queue_override_entry_id", "queue_override", ["entry_id"])

    op.create_table(
        "notification_budget",
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("monthly_limit", sa.Integer(), nullable=False),
        sa.Column("sent_count", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinic.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("clinic_id"),
    )
    op.create_table(
        "notification_template",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("template_key", sa.String(length=64), nullable=False),
        sa.Column("language", sa.String(length=8), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinic.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "clinic_id", "template_key", "language", name="uq_template_key_language"
        ),
    )
    op.create_table(
        "notification_record",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("clinic_id", sa.String(length=36), nullable=False),
        sa.Column("entry_id", sa.String(length=36), nullable=True),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("template_key", sa.String(length=64), nullable=False),
        sa.Column("recipient", sa.String(length=32), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_record_clinic_id", "notification_record", ["clinic_id"]
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index("ix_notification_record_clinic_id", table_name="notification_record")
    op.drop_table("notification_record")
    op.drop_table("notification_template")
    op.drop_table("notification_budget")
    op.drop_index("ix_queue_override_entry_id", table_name="queue_override")
    op.drop_index("ix_queue_override_clinic_created", table_name="queue_override")
    op.drop_table("queue_override")
    op.drop_index("uq_day_closure_active", table_name="day_closure")
    op.drop_table("day_closure")
    op.drop_index("uq_absence_record_open_per_entry", table_name="absence_record")
    op.drop_table("absence_record")
    op.drop_index("uq_queue_entry_single_in_progress", table_name="queue_entry")
    op.drop_index("uq_queue_entry_waiting_position", table_name="queue_entry")
    op.drop_index("ix_queue_entry_clinic_day", table_name="queue_entry")
    op.drop_table("queue_entry")
    op.drop_table("patient_clinic_history")
    op.drop_table("guest_patient")
    op.drop_table("patient")
    op.drop_index("ix_clinic_staff_user_id", table_name="clinic_staff")
    op.drop_table("clinic_staff")
    op.drop_index("ix_clinic_owner_user_id", table_name="clinic")
    op.drop_table("clinic")
