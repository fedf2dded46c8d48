"""Data access for clinics, staff membership and patient contacts."""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.models import Clinic, ClinicStaff, GuestPatient, Patient, QueueEntry

__all__ = ["ClinicRepository", "PatientContact"]


@dataclass(frozen=True)
class PatientContact:
    """Name and phone number used to address a queued patient."""

    full_name: str
    phone_number: str | None


class ClinicRepository:
    """Thin wrapper around clinic, staff and patient lookups."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_clinic(self, clinic_id: str) -> Clinic | None:
        return self.session.get(Clinic, clinic_id)

    def get_staff_membership(self, clinic_id: str, user_id: str) -> ClinicStaff | None:
        stmt = select(ClinicStaff).where(
            ClinicStaff.clinic_id == clinic_id,
            ClinicStaff.user_id == user_id,
        )
        return self.session.execute(stmt).scalars().first()

    def get_patient(self, patient_id: str) -> Patient | None:
        return self.session.get(Patient, patient_id)

    def get_guest_patient(self, guest_patient_id: str) -> GuestPatient | None:
        return self.session.get(GuestPatient, guest_patient_id)

    def get_contact(self, entry: QueueEntry) -> PatientContact | None:
        """Resolve the contact for whichever patient reference the entry carries."""
        person: Patient | GuestPatient | None
        if entry.patient_id is not None:
            person = self.get_patient(entry.patient_id)
        elif entry.guest_patient_id is not None:
            person = self.get_guest_patient(entry.guest_patient_id)
        else:
            person = None
        if person is None:
            return None
        return PatientContact(full_name=person.full_name, phone_number=person.phone_number)
