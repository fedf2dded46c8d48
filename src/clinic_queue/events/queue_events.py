"""Domain events published after each successful queue transition.

Each event type is its own frozen dataclass with a typed payload. The
``event_type`` class attribute is the routing key used by the event bus.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, ClassVar

from clinic_queue.db.time import utcnow


def _event_id() -> str:
    return str(uuid.uuid4())


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, tuple | list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


@dataclass(frozen=True, kw_only=True)
class QueueEvent:
    """Fields shared by every queue event."""

    event_type: ClassVar[str] = "queue.event"

    clinic_id: str
    service_date: date
    performed_by: str
    event_id: str = field(default_factory=_event_id)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def entry_id(self) -> str | None:
        return getattr(self, "entry_ref", None)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready dict including the routing key."""
        data = {key: _jsonable(value) for key, value in asdict(self).items()}
        data["event_type"] = self.event_type
        return data


@dataclass(frozen=True, kw_only=True)
class PatientAddedToQueueEvent(QueueEvent):
    event_type: ClassVar[str] = "queue.patient.added"

    entry_ref: str
    patient_ref: str
    position: int
    appointment_type: str


@dataclass(frozen=True, kw_only=True)
class PatientCalledEvent(QueueEvent):
    """A waiting patient moved to in_progress.

    ``skipped_entry_refs`` lists the waiting entries bypassed by a skip-ahead
    call; it is empty when the head of the queue was called.
    """

    event_type: ClassVar[str] = "queue.patient.called"

    entry_ref: str
    position: int | None
    skip_ahead: bool = False
    skipped_entry_refs: tuple[str, ...] = ()
    next_entry_ref: str | None = None


@dataclass(frozen=True, kw_only=True)
class PatientMarkedAbsentEvent(QueueEvent):
    event_type: ClassVar[str] = "queue.patient.marked_absent"

    entry_ref: str
    previous_position: int | None
    grace_deadline: datetime
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class PatientReturnedEvent(QueueEvent):
    event_type: ClassVar[str] = "queue.patient.returned"

    entry_ref: str
    new_position: int
    returned_at: datetime


@dataclass(frozen=True, kw_only=True)
class QueuePositionChangedEvent(QueueEvent):
    """An explicit reorder; ``displaced`` holds (entry, old, new) for shifted neighbours."""

    event_type: ClassVar[str] = "queue.position.changed"

    entry_ref: str
    old_position: int
    new_position: int
    reason: str | None = None
    displaced: tuple[tuple[str, int, int], ...] = ()


@dataclass(frozen=True, kw_only=True)
class AppointmentStatusChangedEvent(QueueEvent):
    event_type: ClassVar[str] = "queue.appointment.status_changed"

    entry_ref: str
    old_status: str
    new_status: str
    old_position: int | None = None
    new_position: int | None = None
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class DayClosedEvent(QueueEvent):
    event_type: ClassVar[str] = "queue.day.closed"

    closure_id: str
    counts: dict[str, int]
    no_show_entry_refs: tuple[str, ...] = ()
    completed_entry_refs: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class DayReopenedEvent(QueueEvent):
    event_type: ClassVar[str] = "queue.day.reopened"

    closure_id: str
    reason: str


QueueDomainEvent = (
    PatientAddedToQueueEvent
    | PatientCalledEvent
    | PatientMarkedAbsentEvent
    | PatientReturnedEvent
    | QueuePositionChangedEvent
    | AppointmentStatusChangedEvent
    | DayClosedEvent
    | DayReopenedEvent
)

EVENT_CLASSES: dict[str, type[QueueEvent]] = {
    cls.event_type: cls
    for cls in (
        PatientAddedToQueueEvent,
        PatientCalledEvent,
        PatientMarkedAbsentEvent,
        PatientReturnedEvent,
        QueuePositionChangedEvent,
        AppointmentStatusChangedEvent,
        DayClosedEvent,
        DayReopenedEvent,
    )
}

# Every event type above alters queue state and is audited.
QUEUE_MUTATING_EVENT_TYPES: tuple[str, ...] = tuple(EVENT_CLASSES)
