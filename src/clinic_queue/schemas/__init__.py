"""Pydantic request and response schemas."""

from .audit import AuditEntryResponse, NotificationBudgetResponse, NotificationRecordResponse
from .day import (
    DayClosurePreviewResponse,
    DayClosureResponse,
    EndDayRequest,
    EndDayResponse,
    ReopenDayRequest,
)
from .queue import (
    AddToQueueRequest,
    MarkAbsentRequest,
    QueueEntryResponse,
    QueueSummaryResponse,
    ReasonRequest,
    ReorderRequest,
)

__all__ = [
    "AddToQueueRequest",
    "AuditEntryResponse",
    "DayClosurePreviewResponse",
    "DayClosureResponse",
    "EndDayRequest",
    "EndDayResponse",
    "MarkAbsentRequest",
    "NotificationBudgetResponse",
    "NotificationRecordResponse",
    "QueueEntryResponse",
    "QueueSummaryResponse",
    "ReasonRequest",
    "ReopenDayRequest",
    "ReorderRequest",
]
