"""Upserts for the per-clinic patient visit history."""
from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.models import PatientClinicHistory

__all__ = ["HistoryRepository"]


class HistoryRepository:
    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get(
        self,
        clinic_id: str,
        *,
        patient_id: str | None = None,
        guest_patient_id: str | None = None,
    ) -> PatientClinicHistory | None:
        stmt = select(PatientClinicHistory).where(PatientClinicHistory.clinic_id == clinic_id)
        if patient_id is not None:
            stmt = stmt.where(PatientClinicHistory.patient_id == patient_id)
        else:
            stmt = stmt.where(PatientClinicHistory.guest_patient_id == guest_patient_id)
        return self.session.execute(stmt).scalars().first()

    def record_completed_visit(
        self,
        clinic_id: str,
        *,
        entry_id: str,
        visit_date: date,
        patient_id: str | None,
        guest_patient_id: str | None,
    ) -> PatientClinicHistory | None:
        """Count a completed visit once per entry; returns None when already counted."""
        history = self.get(clinic_id, patient_id=patient_id, guest_patient_id=guest_patient_id)
        if history is None:
            history = PatientClinicHistory(
                clinic_id=clinic_id,
                patient_id=patient_id,
                guest_patient_id=guest_patient_id,
                total_visits=0,
                completed_visits=0,
            )
            self.session.add(history)
        elif history.last_entry_id == entry_id:
            return None
        history.total_visits += 1
        history.completed_visits += 1
        if history.last_visit_date is None or visit_date >= history.last_visit_date:
            history.last_visit_date = visit_date
        history.last_entry_id = entry_id
        self.session.flush()
        return history
