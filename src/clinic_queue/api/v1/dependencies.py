"""Shared API dependencies for caller identity and runtime services."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clinic_queue.core.security import decode_subject
from clinic_queue.db.session import get_db
from clinic_queue.services import Caller, QueueRuntime, QueueService

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_caller(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> Caller:
    """Identify the calling staff member from the bearer token.

    Whether the caller may act on a given clinic is decided by the queue
    service, not here.

    Raises:
        HTTPException: If the token is invalid or carries no subject
    """
    subject = decode_subject(credentials.credentials)
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return Caller(user_id=subject)


def get_runtime(request: Request) -> QueueRuntime:
    runtime: QueueRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue runtime is not initialised",
        )
    return runtime


def get_queue_service(runtime: Annotated[QueueRuntime, Depends(get_runtime)]) -> QueueService:
    return runtime.queue_service


CallerDep = Annotated[Caller, Depends(get_caller)]
RuntimeDep = Annotated[QueueRuntime, Depends(get_runtime)]
QueueServiceDep = Annotated[QueueService, Depends(get_queue_service)]
