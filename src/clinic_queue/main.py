"""Main entry point for the clinic queue application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from clinic_queue import __version__
from clinic_queue.api.v1 import audit_router, days_router, queue_router, system_router
from clinic_queue.core.errors import QueueError
from clinic_queue.core.logging import configure_logging
from clinic_queue.core.settings import settings
from clinic_queue.db.session import SessionLocal
from clinic_queue.services import QueueRuntime, build_runtime

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Clinic Queue API",
    description="Live patient queue for clinic staff",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(queue_router, prefix="/api/v1")
app.include_router(days_router, prefix="/api/v1")
app.include_router(audit_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Unhandled queue error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging(settings.log_level)
    # Tests install their own runtime before the app starts.
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime(SessionLocal)
        app.state.owns_runtime = True


@app.on_event("shutdown")
async def on_shutdown() -> None:
    runtime: QueueRuntime | None = getattr(app.state, "runtime", None)
    if runtime is not None and getattr(app.state, "owns_runtime", False):
        runtime.shutdown()
        app.state.runtime = None
        app.state.owns_runtime = False


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Clinic Queue API",
        "version": __version__,
        "description": "Live patient queue for clinic staff",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("clinic_queue.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
