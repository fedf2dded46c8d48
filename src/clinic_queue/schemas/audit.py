"""Audit trail and notification log schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditEntryResponse(BaseModel):
    """Schema for one audit row returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    clinic_id: str
    entry_id: str | None
    action_type: str
    performed_by: str
    reason: str | None
    previous_position: int | None
    new_position: int | None
    previous_status: str | None
    new_status: str | None
    skipped_entry_ids: list[str]
    details: dict[str, Any]
    created_at: datetime


class NotificationRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    entry_id: str | None
    event_id: str
    template_key: str
    recipient: str | None
    outcome: str
    failure_reason: str | None
    created_at: datetime


class NotificationBudgetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    clinic_id: str
    monthly_limit: int
    sent_count: int
    remaining: int
    notifications_enabled: bool
