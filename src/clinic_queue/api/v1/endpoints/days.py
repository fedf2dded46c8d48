"""Day closure endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Query

from clinic_queue.api.v1.dependencies import CallerDep, QueueServiceDep
from clinic_queue.models import DayClosure
from clinic_queue.schemas import (
    DayClosurePreviewResponse,
    DayClosureResponse,
    EndDayRequest,
    EndDayResponse,
    ReopenDayRequest,
)
from clinic_queue.services import DayClosurePreview

router = APIRouter(tags=["days"])


@router.get(
    "/clinics/{clinic_id}/days/preview",
    response_model=DayClosurePreviewResponse,
)
def preview_day_closure(
    clinic_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
    service_date: date | None = Query(None),
) -> DayClosurePreview:
    """Show what closing the day would change, without changing it."""
    return service.preview_day_closure(caller, clinic_id, service_date=service_date)


@router.post("/clinics/{clinic_id}/days/close", response_model=EndDayResponse)
def end_day(
    clinic_id: str,
    payload: EndDayRequest,
    caller: CallerDep,
    service: QueueServiceDep,
) -> EndDayResponse:
    """Finalize every pending entry of the clinic-day in one transaction."""
    result = service.end_day(
        caller,
        clinic_id,
        service_date=payload.service_date,
        reason=payload.reason,
        notes=payload.notes,
    )
    return EndDayResponse(
        closure=DayClosureResponse.model_validate(result.closure),
        counts=result.counts,
    )


@router.post("/closures/{closure_id}/reopen", response_model=DayClosureResponse)
def reopen_day(
    closure_id: str,
    payload: ReopenDayRequest,
    caller: CallerDep,
    service: QueueServiceDep,
) -> DayClosure:
    """Reopen a closed day for manual corrections; entry statuses are not reverted."""
    return service.reopen_day(caller, closure_id, payload.reason)
