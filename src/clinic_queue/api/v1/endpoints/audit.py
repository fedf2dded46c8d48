"""Audit trail and notification log endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Query

from clinic_queue.api.v1.dependencies import CallerDep, QueueServiceDep, RuntimeDep, SessionDep
from clinic_queue.models import NotificationBudget, NotificationRecord, QueueOverride
from clinic_queue.repositories import AuditRepository, NotificationRepository
from clinic_queue.schemas import (
    AuditEntryResponse,
    NotificationBudgetResponse,
    NotificationRecordResponse,
)

router = APIRouter(prefix="/clinics/{clinic_id}", tags=["audit"])


@router.get("/audit", response_model=list[AuditEntryResponse])
def list_audit_entries(
    clinic_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
    db: SessionDep,
    service_date: date | None = Query(None),
    entry_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
) -> list[QueueOverride]:
    """Get the clinic's queue audit trail, newest first."""
    service.authorize(caller, clinic_id)
    return AuditRepository(db).list_for_clinic(
        clinic_id,
        service_date=service_date,
        entry_id=entry_id,
        limit=limit,
    )


@router.get("/notifications", response_model=list[NotificationRecordResponse])
def list_notifications(
    clinic_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
    db: SessionDep,
    limit: int = Query(100, ge=1, le=500),
) -> list[NotificationRecord]:
    service.authorize(caller, clinic_id)
    return NotificationRepository(db).list_records(clinic_id, limit=limit)


@router.get("/notifications/budget", response_model=NotificationBudgetResponse)
def get_notification_budget(
    clinic_id: str,
    caller: CallerDep,
    runtime: RuntimeDep,
) -> NotificationBudget:
    """Current month's SMS budget for the clinic."""
    runtime.queue_service.authorize(caller, clinic_id)
    return runtime.notifications.current_budget(clinic_id)
