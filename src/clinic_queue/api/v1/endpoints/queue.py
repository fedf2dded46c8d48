"""Live queue endpoints for clinic staff."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import date

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from clinic_queue.api.v1.dependencies import CallerDep, QueueServiceDep, RuntimeDep
from clinic_queue.models import QueueEntry
from clinic_queue.models.queue import QueueStatus
from clinic_queue.schemas import (
    AddToQueueRequest,
    MarkAbsentRequest,
    QueueEntryResponse,
    QueueSummaryResponse,
    ReasonRequest,
    ReorderRequest,
)
from clinic_queue.services import PatientRef, QueueSummary

# Seconds between SSE keep-alive comments
STREAM_KEEPALIVE_SECONDS = 15.0

router = APIRouter(prefix="/clinics/{clinic_id}/queue", tags=["queue"])


@router.get("", response_model=list[QueueEntryResponse])
def list_queue(
    clinic_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
    service_date: date | None = Query(None),
    status_filter: list[QueueStatus] | None = Query(None, alias="status"),
) -> list[QueueEntry]:
    """Get the clinic-day queue ordered by position."""
    return service.get_queue(
        caller,
        clinic_id,
        service_date=service_date,
        statuses=status_filter,
    )


@router.get("/summary", response_model=QueueSummaryResponse)
def get_summary(
    clinic_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
    service_date: date | None = Query(None),
) -> QueueSummary:
    """Counts by status, open absences and average wait for a clinic-day."""
    return service.get_queue_summary(caller, clinic_id, service_date=service_date)


@router.post("/entries", response_model=QueueEntryResponse, status_code=status.HTTP_201_CREATED)
def add_to_queue(
    clinic_id: str,
    payload: AddToQueueRequest,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    """Check a patient in at the tail of the queue."""
    return service.add_to_queue(
        caller,
        clinic_id,
        PatientRef(patient_id=payload.patient_id, guest_patient_id=payload.guest_patient_id),
        payload.appointment_type,
        service_date=payload.service_date,
    )


@router.get("/entries/{entry_id}", response_model=QueueEntryResponse)
def get_entry(
    clinic_id: str,
    entry_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    return service.get_entry(caller, clinic_id, entry_id)


@router.post("/call-next", response_model=QueueEntryResponse)
def call_next_patient(
    clinic_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
    service_date: date | None = Query(None),
) -> QueueEntry:
    """Start the appointment at the head of the queue."""
    return service.call_next_patient(caller, clinic_id, service_date=service_date)


@router.post("/entries/{entry_id}/call", response_model=QueueEntryResponse)
def call_specific_patient(
    clinic_id: str,
    entry_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    """Call a present patient ahead of those before them."""
    return service.call_specific_patient(caller, clinic_id, entry_id)


@router.post("/entries/{entry_id}/absent", response_model=QueueEntryResponse)
def mark_absent(
    clinic_id: str,
    entry_id: str,
    payload: MarkAbsentRequest,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    return service.mark_absent(caller, clinic_id, entry_id, payload.reason)


@router.post("/entries/{entry_id}/return", response_model=QueueEntryResponse)
def mark_returned(
    clinic_id: str,
    entry_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    """Re-queue an absent patient who came back within the grace period."""
    return service.mark_returned(caller, clinic_id, entry_id)


@router.post("/entries/{entry_id}/complete", response_model=QueueEntryResponse)
def complete_appointment(
    clinic_id: str,
    entry_id: str,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    return service.complete_appointment(caller, clinic_id, entry_id)


@router.post("/entries/{entry_id}/reorder", response_model=QueueEntryResponse)
def reorder_entry(
    clinic_id: str,
    entry_id: str,
    payload: ReorderRequest,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    return service.reorder_entry(caller, clinic_id, entry_id, payload.new_position, payload.reason)


@router.post("/entries/{entry_id}/restore", response_model=QueueEntryResponse)
def restore_entry(
    clinic_id: str,
    entry_id: str,
    payload: ReasonRequest,
    caller: CallerDep,
    service: QueueServiceDep,
) -> QueueEntry:
    """Put a no-show back in the queue after the day was reopened."""
    return service.restore_entry(caller, clinic_id, entry_id, payload.reason)


@router.get("/stream")
async def stream_queue_events(
    clinic_id: str,
    request: Request,
    caller: CallerDep,
    runtime: RuntimeDep,
) -> StreamingResponse:
    """Server-Sent Events feed of the clinic's queue events."""
    await run_in_threadpool(runtime.queue_service.authorize, caller, clinic_id)

    async def event_source() -> AsyncIterator[str]:
        async with runtime.live_feed.listen(clinic_id) as listener:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                payload = await listener.get(timeout=STREAM_KEEPALIVE_SECONDS)
                if payload is None:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: {payload['event_type']}\ndata: {json.dumps(payload)}\n\n"

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
