"""Clinic and staff membership models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.db.session import Base
from clinic_queue.db.time import utcnow

STAFF_ROLE_MANAGER = "manager"
STAFF_ROLE_DOCTOR = "doctor"
STAFF_ROLE_RECEPTIONIST = "receptionist"

# Roles allowed to reopen a closed day alongside the clinic owner.
PRIVILEGED_STAFF_ROLES = frozenset({STAFF_ROLE_MANAGER})


def _uuid() -> str:
    return str(uuid.uuid4())


class Clinic(Base):
    """A clinic running one live queue per service day."""

    __tablename__ = "clinic"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    owner_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Language used to pick notification templates: "en", "fr" or "ar".
    preferred_language: Mapped[str] = mapped_column(String(8), nullable=False, default="en")
    # Falls back to settings.absent_grace_period_minutes when NULL.
    absent_grace_period_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class ClinicStaff(Base):
    """Membership of a user in a clinic's staff."""

    __tablename__ = "clinic_staff"
    __table_args__ = (UniqueConstraint("clinic_id", "user_id", name="uq_clinic_staff_user"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    clinic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clinic.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=STAFF_ROLE_RECEPTIONIST)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
