"""Patients, walk-in guests and per-clinic visit history."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.db.session import Base
from clinic_queue.db.time import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Patient(Base):
    """Registered patient with a platform account."""

    __tablename__ = "patient"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)


class GuestPatient(Base):
    """Walk-in patient registered by clinic staff without an account."""

    __tablename__ = "guest_patient"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    clinic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clinic.id", ondelete="CASCADE"), nullable=False
    )
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)


class PatientClinicHistory(Base):
    """Running visit tally of one patient (registered or guest) at one clinic."""

    __tablename__ = "patient_clinic_history"
    __table_args__ = (
        UniqueConstraint("clinic_id", "patient_id", name="uq_history_patient"),
        UniqueConstraint("clinic_id", "guest_patient_id", name="uq_history_guest"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    clinic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clinic.id", ondelete="CASCADE"), nullable=False
    )
    patient_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("patient.id"), nullable=True
    )
    guest_patient_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("guest_patient.id"), nullable=True
    )
    total_visits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_visits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_visit_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
