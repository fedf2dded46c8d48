"""Queue entries, absence records and day closures.

The queue for one clinic-day is the set of ``QueueEntry`` rows sharing a
``(clinic_id, service_date)`` pair. Waiting entries are ordered by
``position``; positions are sparse and never renumbered except by an
explicit reorder.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.db.session import Base
from clinic_queue.db.time import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class QueueStatus(str, enum.Enum):
    """Lifecycle status of a queue entry."""

    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    ABSENT = "absent"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class AppointmentType(str, enum.Enum):
    """Kind of visit the patient queued for."""

    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"
    PROCEDURE = "procedure"
    VACCINATION = "vaccination"
    SCREENING = "screening"


# Every status change the queue core is allowed to make.
ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.WAITING: frozenset(
        {QueueStatus.IN_PROGRESS, QueueStatus.ABSENT, QueueStatus.NO_SHOW}
    ),
    QueueStatus.IN_PROGRESS: frozenset({QueueStatus.COMPLETED}),
    QueueStatus.ABSENT: frozenset({QueueStatus.WAITING, QueueStatus.NO_SHOW}),
    QueueStatus.COMPLETED: frozenset(),
    # Only reachable again through the manual restore after a reopened day.
    QueueStatus.NO_SHOW: frozenset({QueueStatus.WAITING}),
}

ACTIVE_STATUSES = frozenset({QueueStatus.WAITING, QueueStatus.IN_PROGRESS, QueueStatus.ABSENT})


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    """Return True when ``current -> target`` is a legal status change."""
    return target in ALLOWED_TRANSITIONS[current]


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class QueueEntry(Base):
    """One patient's place in one clinic-day queue."""

    __tablename__ = "queue_entry"
    __table_args__ = (
        CheckConstraint(
            "(patient_id IS NULL) <> (guest_patient_id IS NULL)",
            name="ck_queue_entry_one_patient_ref",
        ),
        Index("ix_queue_entry_clinic_day", "clinic_id", "service_date"),
        Index(
            "uq_queue_entry_waiting_position",
            "clinic_id",
            "service_date",
            "position",
            unique=True,
            sqlite_where=text("status = 'waiting'"),
            postgresql_where=text("status = 'waiting'"),
        ),
        Index(
            "uq_queue_entry_single_in_progress",
            "clinic_id",
            "service_date",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    clinic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clinic.id", ondelete="CASCADE"), nullable=False
    )
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Exactly one of the two patient references is set.
    patient_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("patient.id"), nullable=True
    )
    guest_patient_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("guest_patient.id"), nullable=True
    )
    appointment_type: Mapped[AppointmentType] = mapped_column(
        SAEnum(
            AppointmentType,
            name="appointment_type",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=AppointmentType.CONSULTATION,
    )
    status: Mapped[QueueStatus] = mapped_column(
        SAEnum(
            QueueStatus,
            name="queue_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=QueueStatus.WAITING,
    )
    # Released (NULL) while absent or after no_show; kept as the ticket number
    # for in_progress and completed entries.
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    original_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    skip_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    called_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def patient_ref(self) -> str:
        """Return whichever patient identifier is set."""
        return self.patient_id or self.guest_patient_id or ""


class AbsenceRecord(Base):
    """Grace-period bookkeeping for an entry marked absent."""

    __tablename__ = "absence_record"
    __table_args__ = (
        Index(
            "uq_absence_record_open_per_entry",
            "entry_id",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    entry_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("queue_entry.id", ondelete="CASCADE"), nullable=False
    )
    clinic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    marked_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    marked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    grace_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    new_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # "returned" or "day_closed"; NULL while the record is open.
    closed_reason: Mapped[str | None] = mapped_column(String(16), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None


ABSENCE_CLOSED_RETURNED = "returned"
ABSENCE_CLOSED_DAY_END = "day_closed"


class DayClosure(Base):
    """Summary of one end-of-day finalization for a clinic-day."""

    __tablename__ = "day_closure"
    __table_args__ = (
        Index(
            "uq_day_closure_active",
            "clinic_id",
            "service_date",
            unique=True,
            sqlite_where=text("reopened_at IS NULL"),
            postgresql_where=text("reopened_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    clinic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clinic.id", ondelete="CASCADE"), nullable=False
    )
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Counts observed before closing.
    total_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    waiting_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    absent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    in_progress_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Entries transitioned by the closure.
    marked_no_show_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    marked_completed_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reopen_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.reopened_at is None
