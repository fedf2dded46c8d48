"""Data access for queue entries, absence records and day closures."""
from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any, TypeVar

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from clinic_queue.models.queue import (
    ACTIVE_STATUSES,
    AbsenceRecord,
    DayClosure,
    QueueEntry,
    QueueStatus,
)

__all__ = ["QueueRepository"]

T = TypeVar("T")


def _advisory_key(clinic_id: str, service_date: date) -> int:
    digest = hashlib.sha256(f"{clinic_id}:{service_date.isoformat()}".encode()).digest()
    # pg_advisory_xact_lock takes a signed bigint.
    return int.from_bytes(digest[:8], "big", signed=True)


class QueueRepository:
    """Persistence boundary for one unit of queue work.

    Write methods refuse to run outside an active transaction so that
    multi-step operations always compose atomically.
    """

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def _require_transaction(self) -> None:
        if not self.session.in_transaction():
            raise RuntimeError("queue writes require an active transaction")

    def lock_clinic_day(self, clinic_id: str, service_date: date) -> None:
        """Take the database-level exclusive section for a clinic-day.

        Only PostgreSQL supports this; other backends rely on the in-process
        lock held by the service.
        """
        if self.session.get_bind().dialect.name != "postgresql":
            return
        self.session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": _advisory_key(clinic_id, service_date)},
        )

    def run_in_transaction(self, fn: Callable[[QueueRepository], T]) -> T:
        """Run ``fn`` atomically; nested calls use a savepoint."""
        if self.session.in_transaction():
            with self.session.begin_nested():
                return fn(self)
        with self.session.begin():
            return fn(self)

    # Entries

    def get_entry(self, entry_id: str) -> QueueEntry | None:
        return self.session.get(QueueEntry, entry_id)

    def get_queue_by_date(
        self,
        clinic_id: str,
        service_date: date,
        statuses: Iterable[QueueStatus] | None = None,
    ) -> list[QueueEntry]:
        """Return the clinic-day's entries ordered by position, then check-in time."""
        stmt = select(QueueEntry).where(
            QueueEntry.clinic_id == clinic_id,
            QueueEntry.service_date == service_date,
        )
        if statuses is not None:
            stmt = stmt.where(QueueEntry.status.in_(list(statuses)))
        stmt = stmt.order_by(
            QueueEntry.position.is_(None),
            QueueEntry.position,
            QueueEntry.checked_in_at,
        )
        return list(self.session.execute(stmt).scalars())

    def get_waiting(self, clinic_id: str, service_date: date) -> list[QueueEntry]:
        return self.get_queue_by_date(clinic_id, service_date, [QueueStatus.WAITING])

    def get_in_progress(self, clinic_id: str, service_date: date) -> QueueEntry | None:
        stmt = select(QueueEntry).where(
            QueueEntry.clinic_id == clinic_id,
            QueueEntry.service_date == service_date,
            QueueEntry.status == QueueStatus.IN_PROGRESS,
        )
        return self.session.execute(stmt).scalars().first()

    def max_waiting_position(self, clinic_id: str, service_date: date) -> int:
        """Return the highest waiting position, or 0 for an empty queue."""
        stmt = select(func.max(QueueEntry.position)).where(
            QueueEntry.clinic_id == clinic_id,
            QueueEntry.service_date == service_date,
            QueueEntry.status == QueueStatus.WAITING,
        )
        return int(self.session.execute(stmt).scalar() or 0)

    def list_active_entries_for_patient(
        self,
        clinic_id: str,
        service_date: date,
        *,
        patient_id: str | None,
        guest_patient_id: str | None,
    ) -> list[QueueEntry]:
        stmt = select(QueueEntry).where(
            QueueEntry.clinic_id == clinic_id,
            QueueEntry.service_date == service_date,
            QueueEntry.status.in_(list(ACTIVE_STATUSES)),
        )
        if patient_id is not None:
            stmt = stmt.where(QueueEntry.patient_id == patient_id)
        else:
            stmt = stmt.where(QueueEntry.guest_patient_id == guest_patient_id)
        return list(self.session.execute(stmt).scalars())

    def count_by_status(self, clinic_id: str, service_date: date) -> dict[QueueStatus, int]:
        stmt = (
            select(QueueEntry.status, func.count())
            .where(
                QueueEntry.clinic_id == clinic_id,
                QueueEntry.service_date == service_date,
            )
            .group_by(QueueEntry.status)
        )
        counts = {status: 0 for status in QueueStatus}
        for status, count in self.session.execute(stmt):
            counts[QueueStatus(status)] = int(count)
        return counts

    def create_queue_entry(self, **fields: Any) -> QueueEntry:
        """Insert a new entry and return the persisted ORM instance."""
        self._require_transaction()
        entry = QueueEntry(**fields)
        self.session.add(entry)
        self.session.flush()
        return entry

    def update_queue_entry(self, entry_id: str, fields: Mapping[str, Any]) -> QueueEntry:
        """Apply ``fields`` to an entry and flush immediately.

        Flushing per call keeps the partial unique indexes evaluated in the
        order the service issues updates.
        """
        self._require_transaction()
        entry = self.get_entry(entry_id)
        if entry is None:
            raise LookupError(f"queue entry {entry_id} disappeared mid-transaction")
        for name, value in fields.items():
            setattr(entry, name, value)
        self.session.flush()
        return entry

    # Absences

    def get_open_absence(self, entry_id: str) -> AbsenceRecord | None:
        stmt = select(AbsenceRecord).where(
            AbsenceRecord.entry_id == entry_id,
            AbsenceRecord.closed_at.is_(None),
        )
        return self.session.execute(stmt).scalars().first()

    def list_open_absences(self, clinic_id: str, service_date: date) -> list[AbsenceRecord]:
        stmt = (
            select(AbsenceRecord)
            .join(QueueEntry, QueueEntry.id == AbsenceRecord.entry_id)
            .where(
                QueueEntry.clinic_id == clinic_id,
                QueueEntry.service_date == service_date,
                AbsenceRecord.closed_at.is_(None),
            )
        )
        return list(self.session.execute(stmt).scalars())

    def create_absence_record(self, **fields: Any) -> AbsenceRecord:
        self._require_transaction()
        record = AbsenceRecord(**fields)
        self.session.add(record)
        self.session.flush()
        return record

    def close_absence_record(
        self,
        record: AbsenceRecord,
        *,
        closed_at: datetime,
        reason: str,
        returned_at: datetime | None = None,
        new_position: int | None = None,
    ) -> AbsenceRecord:
        self._require_transaction()
        record.closed_at = closed_at
        record.closed_reason = reason
        record.returned_at = returned_at
        record.new_position = new_position
        self.session.flush()
        return record

    # Day closures

    def get_active_closure(self, clinic_id: str, service_date: date) -> DayClosure | None:
        stmt = select(DayClosure).where(
            DayClosure.clinic_id == clinic_id,
            DayClosure.service_date == service_date,
            DayClosure.reopened_at.is_(None),
        )
        return self.session.execute(stmt).scalars().first()

    def get_closure(self, closure_id: str) -> DayClosure | None:
        return self.session.get(DayClosure, closure_id)

    def create_day_closure(self, **fields: Any) -> DayClosure:
        self._require_transaction()
        closure = DayClosure(**fields)
        self.session.add(closure)
        self.session.flush()
        return closure
