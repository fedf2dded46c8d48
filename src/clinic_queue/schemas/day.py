"""Day closure Pydantic schemas."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class EndDayRequest(BaseModel):
    """Schema for finalizing a clinic-day."""

    service_date: date | None = Field(None, description="Defaults to today (UTC)")
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=2000)


class ReopenDayRequest(BaseModel):
    reason: str | None = Field(None, description="Why the closed day is being reopened")


class DayClosureResponse(BaseModel):
    """Schema for day closure information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    service_date: date
    performed_by: str
    closed_at: datetime
    reason: str | None
    notes: str | None
    total_entries: int
    waiting_count: int
    absent_count: int
    in_progress_count: int
    completed_count: int
    marked_no_show_ids: list[str]
    marked_completed_ids: list[str]
    reopened_at: datetime | None
    reopened_by: str | None
    reopen_reason: str | None


class EndDayResponse(BaseModel):
    closure: DayClosureResponse
    counts: dict[str, int]


class DayClosurePreviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    clinic_id: str
    service_date: date
    already_closed: bool
    counts: dict[str, int]
    would_mark_no_show: list[str]
    would_complete: list[str]
