"""API endpoint modules for version 1."""

from .audit import router as audit_router
from .days import router as days_router
from .queue import router as queue_router
from .system import router as system_router

__all__ = [
    "audit_router",
    "days_router",
    "queue_router",
    "system_router",
]
