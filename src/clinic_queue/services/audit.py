"""Audit trail subscriber.

Turns each queue event into one immutable ``QueueOverride`` row. The audit
write happens in its own session after the queue transaction committed, so
a failure here is logged and leaves the queue state untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clinic_queue.events import (
    QUEUE_MUTATING_EVENT_TYPES,
    AppointmentStatusChangedEvent,
    DayClosedEvent,
    DayReopenedEvent,
    EventBus,
    PatientAddedToQueueEvent,
    PatientCalledEvent,
    PatientMarkedAbsentEvent,
    PatientReturnedEvent,
    QueueEvent,
    QueuePositionChangedEvent,
)
from clinic_queue.models import QueueActionType
from clinic_queue.models.queue import QueueStatus
from clinic_queue.repositories import AuditRepository

logger = logging.getLogger(__name__)


def _added(event: PatientAddedToQueueEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.ADD,
        "new_position": event.position,
        "new_status": QueueStatus.WAITING.value,
        "details": {"appointment_type": event.appointment_type, "patient_ref": event.patient_ref},
    }


def _called(event: PatientCalledEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.CALL_PRESENT if event.skip_ahead else QueueActionType.CALL_NEXT,
        "previous_position": event.position,
        "new_position": event.position,
        "previous_status": QueueStatus.WAITING.value,
        "new_status": QueueStatus.IN_PROGRESS.value,
        "skipped_entry_ids": list(event.skipped_entry_refs),
    }


def _marked_absent(event: PatientMarkedAbsentEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.MARK_ABSENT,
        "reason": event.reason,
        "previous_position": event.previous_position,
        "previous_status": QueueStatus.WAITING.value,
        "new_status": QueueStatus.ABSENT.value,
        "details": {"grace_deadline": event.grace_deadline.isoformat()},
    }


def _returned(event: PatientReturnedEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.LATE_ARRIVAL,
        "new_position": event.new_position,
        "previous_status": QueueStatus.ABSENT.value,
        "new_status": QueueStatus.WAITING.value,
    }


def _position_changed(event: QueuePositionChangedEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.REORDER,
        "reason": event.reason,
        "previous_position": event.old_position,
        "new_position": event.new_position,
        "previous_status": QueueStatus.WAITING.value,
        "new_status": QueueStatus.WAITING.value,
        "details": {
            "displaced": [
                {"entry_id": entry_id, "from": old, "to": new}
                for entry_id, old, new in event.displaced
            ]
        },
    }


def _status_changed(event: AppointmentStatusChangedEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.STATUS_CHANGE,
        "reason": event.reason,
        "previous_position": event.old_position,
        "new_position": event.new_position,
        "previous_status": event.old_status,
        "new_status": event.new_status,
    }


def _day_closed(event: DayClosedEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.END_DAY,
        "details": {
            "closure_id": event.closure_id,
            "counts": dict(event.counts),
            "no_show_entry_ids": list(event.no_show_entry_refs),
            "completed_entry_ids": list(event.completed_entry_refs),
        },
    }


def _day_reopened(event: DayReopenedEvent) -> dict[str, Any]:
    return {
        "action_type": QueueActionType.REOPEN_DAY,
        "reason": event.reason,
        "details": {"closure_id": event.closure_id},
    }


_BUILDERS: dict[type[QueueEvent], Callable[[Any], dict[str, Any]]] = {
    PatientAddedToQueueEvent: _added,
    PatientCalledEvent: _called,
    PatientMarkedAbsentEvent: _marked_absent,
    PatientReturnedEvent: _returned,
    QueuePositionChangedEvent: _position_changed,
    AppointmentStatusChangedEvent: _status_changed,
    DayClosedEvent: _day_closed,
    DayReopenedEvent: _day_reopened,
}


class AuditRecorder:
    """Persists one audit row per queue event, at most once per event id."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self.recorded = 0
        self.failures = 0

    def register(self, bus: EventBus) -> None:
        bus.subscribe_many(QUEUE_MUTATING_EVENT_TYPES, self.handle)

    def handle(self, event: QueueEvent) -> None:
        builder = _BUILDERS.get(type(event))
        if builder is None:
            logger.warning("No audit mapping for event type %s", event.event_type)
            return
        fields = builder(event)
        action = fields.pop("action_type")

        with self._session_factory() as session:
            repo = AuditRepository(session)
            try:
                if repo.exists_for_event(event.event_id):
                    logger.debug("Audit row for event %s already present", event.event_id)
                    return
                repo.append(
                    event_id=event.event_id,
                    clinic_id=event.clinic_id,
                    entry_id=event.entry_id,
                    action_type=action.value,
                    performed_by=event.performed_by,
                    created_at=event.occurred_at,
                    **fields,
                )
                session.commit()
            except IntegrityError:
                # A concurrent delivery of the same event won the insert.
                session.rollback()
                logger.debug("Duplicate audit delivery for event %s ignored", event.event_id)
                return
            except SQLAlchemyError:
                session.rollback()
                self.failures += 1
                logger.exception(
                    "Failed to record audit row for %s id=%s",
                    event.event_type,
                    event.event_id,
                )
                return
        self.recorded += 1
        logger.debug("Recorded audit %s for event %s", action.value, event.event_id)
