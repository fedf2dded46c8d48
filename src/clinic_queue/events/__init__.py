"""Queue domain events and the in-process event bus."""

from .bus import EventBus, EventHandler
from .queue_events import (
    EVENT_CLASSES,
    QUEUE_MUTATING_EVENT_TYPES,
    AppointmentStatusChangedEvent,
    DayClosedEvent,
    DayReopenedEvent,
    PatientAddedToQueueEvent,
    PatientCalledEvent,
    PatientMarkedAbsentEvent,
    PatientReturnedEvent,
    QueueDomainEvent,
    QueueEvent,
    QueuePositionChangedEvent,
)

__all__ = [
    "EventBus",
    "EventHandler",
    "EVENT_CLASSES",
    "QUEUE_MUTATING_EVENT_TYPES",
    "AppointmentStatusChangedEvent",
    "DayClosedEvent",
    "DayReopenedEvent",
    "PatientAddedToQueueEvent",
    "PatientCalledEvent",
    "PatientMarkedAbsentEvent",
    "PatientReturnedEvent",
    "QueueDomainEvent",
    "QueueEvent",
    "QueuePositionChangedEvent",
]
