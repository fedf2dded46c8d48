"""Queue-related Pydantic schemas."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from clinic_queue.models.queue import AppointmentType, QueueStatus


class AddToQueueRequest(BaseModel):
    """Schema for checking a patient into the queue."""

    patient_id: str | None = Field(None, description="Registered patient id")
    guest_patient_id: str | None = Field(None, description="Walk-in guest patient id")
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    service_date: date | None = Field(None, description="Defaults to today (UTC)")


class MarkAbsentRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class ReorderRequest(BaseModel):
    """Schema for moving a waiting entry to another position."""

    new_position: int = Field(..., description="Target position, 1 or greater")
    reason: str | None = Field(None, max_length=500)


class ReasonRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class QueueEntryResponse(BaseModel):
    """Schema for queue entry information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    service_date: date
    patient_id: str | None
    guest_patient_id: str | None
    appointment_type: AppointmentType
    status: QueueStatus
    position: int | None
    original_position: int | None
    skip_count: int
    checked_in_at: datetime
    called_at: datetime | None
    completed_at: datetime | None


class QueueSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    clinic_id: str
    service_date: date
    counts: dict[str, int]
    queue_length: int
    open_absences: int
    in_progress_entry_id: str | None
    average_wait_minutes: float | None
    day_closed: bool
