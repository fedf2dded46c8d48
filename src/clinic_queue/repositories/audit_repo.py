"""Append-only access to the queue audit trail."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.db.time import UTC
from clinic_queue.models import QueueOverride

__all__ = ["AuditRepository"]


class AuditRepository:
    """Inserts and lists audit rows; rows are never updated or deleted."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def exists_for_event(self, event_id: str) -> bool:
        stmt = select(QueueOverride.id).where(QueueOverride.event_id == event_id)
        return self.session.execute(stmt).first() is not None

    def append(self, **fields: Any) -> QueueOverride:
        row = QueueOverride(**fields)
        self.session.add(row)
        self.session.flush()
        return row

    def list_for_clinic(
        self,
        clinic_id: str,
        *,
        service_date: date | None = None,
        entry_id: str | None = None,
        limit: int = 100,
    ) -> list[QueueOverride]:
        """Return audit rows for a clinic, newest first."""
        stmt = select(QueueOverride).where(QueueOverride.clinic_id == clinic_id)
        if entry_id is not None:
            stmt = stmt.where(QueueOverride.entry_id == entry_id)
        if service_date is not None:
            start = datetime.combine(service_date, time.min, tzinfo=UTC)
            stmt = stmt.where(
                QueueOverride.created_at >= start,
                QueueOverride.created_at < start + timedelta(days=1),
            )
        stmt = stmt.order_by(QueueOverride.created_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())
