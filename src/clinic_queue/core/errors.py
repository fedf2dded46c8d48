"""Error taxonomy for queue operations.

Every failure the queue core surfaces to a caller is one of the classes
below. Callers never see a partially applied transition: when one of these
is raised the clinic-day transaction has already been rolled back.
"""

from __future__ import annotations

from typing import Any


class QueueError(Exception):
    """Base class for errors surfaced by the queue core."""

    code = "QUEUE_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        rule: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready representation for API responses."""
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.rule is not None:
            body["rule"] = self.rule
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(QueueError):
    """Malformed or missing input. Never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthorizationError(QueueError):
    """Caller is not owner or active staff of the target clinic."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(QueueError):
    """Referenced entry, closure or clinic does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: object | None = None) -> None:
        message = (
            f"{resource} '{identifier}' not found" if identifier is not None
            else f"{resource} not found"
        )
        super().__init__(message, details={"resource": resource})


class BusinessRuleError(QueueError):
    """Valid input that would violate a queue state-machine rule."""

    code = "BUSINESS_RULE_VIOLATION"
    status_code = 409

    def __init__(self, message: str, *, rule: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, rule=rule, details=details)


class ConcurrencyError(QueueError):
    """Lock or transaction conflict; the caller may retry once with fresh state."""

    code = "CONCURRENCY_CONFLICT"
    status_code = 409
    retryable = True


class NotificationTransportError(RuntimeError):
    """Raised by SMS transports; contained inside the notification dispatcher."""
