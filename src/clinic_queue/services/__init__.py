"""Queue services and event subscribers."""

from clinic_queue.services.queue_service import (
    Caller,
    DayCloseResult,
    DayClosurePreview,
    PatientRef,
    QueueService,
    QueueSummary,
)
from clinic_queue.services.runtime import QueueRuntime, build_runtime

__all__ = [
    "Caller",
    "DayCloseResult",
    "DayClosurePreview",
    "PatientRef",
    "QueueRuntime",
    "QueueService",
    "QueueSummary",
    "build_runtime",
]
