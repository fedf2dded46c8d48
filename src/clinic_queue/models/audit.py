"""Append-only audit trail of queue-altering actions."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.db.session import Base
from clinic_queue.db.time import utcnow


class QueueActionType(str, enum.Enum):
    """Action recorded by an audit row."""

    ADD = "add"
    CALL_NEXT = "call_next"
    CALL_PRESENT = "call_present"
    MARK_ABSENT = "mark_absent"
    LATE_ARRIVAL = "late_arrival"
    REORDER = "reorder"
    STATUS_CHANGE = "status_change"
    END_DAY = "end_day"
    REOPEN_DAY = "reopen_day"


class QueueOverride(Base):
    """Immutable audit row; one per published queue event.

    ``event_id`` is unique so a redelivered event never produces a second row.
    """

    __tablename__ = "queue_override"
    __table_args__ = (Index("ix_queue_override_clinic_created", "clinic_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    clinic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # NULL for clinic-day level actions (end/reopen day).
    entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    skipped_entry_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    details: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
