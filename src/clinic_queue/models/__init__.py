"""SQLAlchemy models for the clinic queue."""

from .audit import QueueActionType, QueueOverride
from .clinic import Clinic, ClinicStaff
from .notification import NotificationBudget, NotificationRecord, NotificationTemplate
from .patient import GuestPatient, Patient, PatientClinicHistory
from .queue import AbsenceRecord, AppointmentType, DayClosure, QueueEntry, QueueStatus

__all__ = [
    "QueueActionType", "QueueOverride",
    "Clinic", "ClinicStaff",
    "NotificationBudget", "NotificationRecord", "NotificationTemplate",
    "GuestPatient", "Patient", "PatientClinicHistory",
    "AbsenceRecord", "AppointmentType", "DayClosure", "QueueEntry", "QueueStatus",
]
