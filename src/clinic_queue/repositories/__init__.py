"""Repository layer wrapping SQLAlchemy sessions."""

from clinic_queue.repositories.audit_repo import AuditRepository
from clinic_queue.repositories.clinic_repo import ClinicRepository, PatientContact
from clinic_queue.repositories.history_repo import HistoryRepository
from clinic_queue.repositories.notification_repo import NotificationRepository
from clinic_queue.repositories.queue_repo import QueueRepository

__all__ = [
    "AuditRepository",
    "ClinicRepository",
    "HistoryRepository",
    "NotificationRepository",
    "PatientContact",
    "QueueRepository",
]
