"""System and diagnostics endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from sqlalchemy import text

from clinic_queue.api.v1.dependencies import RuntimeDep, SessionDep
from clinic_queue.core.settings import settings

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
def get_public_config(runtime: RuntimeDep) -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets and connection strings.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "queue": {
            "absent_grace_period_minutes": settings.absent_grace_period_minutes,
            "day_reopen_window_minutes": settings.day_reopen_window_minutes,
        },
        "notifications": {
            "default_monthly_sms_limit": settings.default_monthly_sms_limit,
            "simulation": bool(getattr(runtime.transport, "simulated", True)),
        },
    }


@router.get("/events")
def get_recent_events(
    runtime: RuntimeDep,
    limit: int = Query(50, ge=1, le=500),
) -> dict[str, Any]:
    """Recent events from the bus history buffer plus delivery counters.

    Diagnostic only; the buffer is bounded and is not a durable log.
    """
    stats = runtime.bus.stats
    return {
        "stats": {
            "published": stats.published,
            "delivered": stats.delivered,
            "failed": stats.failed,
        },
        "events": [event.to_dict() for event in reversed(runtime.bus.recent(limit))],
    }


@router.get("/health")
def get_system_health(db: SessionDep, runtime: RuntimeDep) -> dict[str, object]:
    """Health check covering the database and the event bus."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "components": {
            "database": db_status,
            "event_bus": {"failed_deliveries": runtime.bus.stats.failed},
        },
        "version": settings.app_version,
    }
