"""Notification budget, templates and dispatch log."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.db.session import Base
from clinic_queue.db.time import utcnow

OUTCOME_SENT = "sent"
OUTCOME_SIMULATED = "simulated"
OUTCOME_FAILED = "failed"
OUTCOME_BUDGET_EXCEEDED = "budget_exceeded"
OUTCOME_DISABLED = "disabled"
OUTCOME_NO_RECIPIENT = "no_recipient"


class NotificationBudget(Base):
    """Monthly outbound message cap for one clinic."""

    __tablename__ = "notification_budget"

    clinic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clinic.id", ondelete="CASCADE"), primary_key=True
    )
    monthly_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # First day of the billing period the counter belongs to.
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def remaining(self) -> int:
        return max(self.monthly_limit - self.sent_count, 0)


class NotificationTemplate(Base):
    """Clinic-specific message template overriding the built-in default."""

    __tablename__ = "notification_template"
    __table_args__ = (
        UniqueConstraint("clinic_id", "template_key", "language", name="uq_template_key_language"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clinic.id", ondelete="CASCADE"), nullable=False
    )
    template_key: Mapped[str] = mapped_column(String(64), nullable=False)
    language: Mapped[str] = mapped_column(String(8), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class NotificationRecord(Base):
    """Outcome of a single dispatch attempt."""

    __tablename__ = "notification_record"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False)
    template_key: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient: Mapped[str | None] = mapped_column(String(32), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
