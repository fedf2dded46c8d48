"""Version 1 API endpoints."""

from .endpoints import audit_router, days_router, queue_router, system_router

__all__ = [
    "audit_router",
    "days_router",
    "queue_router",
    "system_router",
]
