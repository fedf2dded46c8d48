"""Per-clinic visit history maintained from completion events."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clinic_queue.events import AppointmentStatusChangedEvent, DayClosedEvent, EventBus, QueueEvent
from clinic_queue.models import QueueEntry
from clinic_queue.models.queue import QueueStatus
from clinic_queue.repositories import HistoryRepository

logger = logging.getLogger(__name__)


class PatientHistoryRecorder:
    """Counts completed visits per patient and clinic.

    Completions come from a single ``complete_appointment`` or from the
    in-progress entry finalized by ``end_day``.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def register(self, bus: EventBus) -> None:
        bus.subscribe(AppointmentStatusChangedEvent.event_type, self.handle)
        bus.subscribe(DayClosedEvent.event_type, self.handle)

    def handle(self, event: QueueEvent) -> None:
        if isinstance(event, AppointmentStatusChangedEvent):
            if event.new_status != QueueStatus.COMPLETED.value:
                return
            entry_ids: tuple[str, ...] = (event.entry_ref,)
        elif isinstance(event, DayClosedEvent):
            entry_ids = event.completed_entry_refs
        else:
            return
        if not entry_ids:
            return

        with self._session_factory() as session:
            repo = HistoryRepository(session)
            try:
                for entry_id in entry_ids:
                    entry = session.get(QueueEntry, entry_id)
                    if entry is None:
                        logger.warning("History skipped: entry %s not found", entry_id)
                        continue
                    repo.record_completed_visit(
                        entry.clinic_id,
                        entry_id=entry.id,
                        visit_date=entry.service_date,
                        patient_id=entry.patient_id,
                        guest_patient_id=entry.guest_patient_id,
                    )
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception("Failed to update patient history for event %s", event.event_id)
                return
        logger.debug("Patient history updated for %d entr(ies)", len(entry_ids))
