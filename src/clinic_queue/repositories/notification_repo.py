"""Data access for notification budgets, templates and dispatch records."""
from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from clinic_queue.models import NotificationBudget, NotificationRecord, NotificationTemplate

__all__ = ["NotificationRepository"]


class NotificationRepository:
    """Budget accounting and template lookup for outbound messages."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_or_create_budget(
        self,
        clinic_id: str,
        *,
        period_start: date,
        default_limit: int,
    ) -> NotificationBudget:
        """Return the clinic budget, resetting the counter when a new month began."""
        budget = self.session.get(NotificationBudget, clinic_id)
        if budget is None:
            budget = NotificationBudget(
                clinic_id=clinic_id,
                monthly_limit=default_limit,
                sent_count=0,
                period_start=period_start,
                notifications_enabled=True,
            )
            self.session.add(budget)
            self.session.flush()
            return budget
        if budget.period_start < period_start:
            self.session.execute(
                update(NotificationBudget)
                .where(
                    NotificationBudget.clinic_id == clinic_id,
                    NotificationBudget.period_start < period_start,
                )
                .values(sent_count=0, period_start=period_start)
            )
            self.session.refresh(budget)
        return budget

    def try_consume(self, clinic_id: str) -> bool:
        """Atomically take one unit of budget; False when the cap is reached.

        The check and the increment are a single conditional UPDATE, so two
        dispatchers racing for the last unit cannot both succeed.
        """
        result = self.session.execute(
            update(NotificationBudget)
            .where(
                NotificationBudget.clinic_id == clinic_id,
                NotificationBudget.sent_count < NotificationBudget.monthly_limit,
            )
            .values(sent_count=NotificationBudget.sent_count + 1)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def release(self, clinic_id: str) -> None:
        """Return one unit reserved for a send that failed in transport."""
        self.session.execute(
            update(NotificationBudget)
            .where(
                NotificationBudget.clinic_id == clinic_id,
                NotificationBudget.sent_count > 0,
            )
            .values(sent_count=NotificationBudget.sent_count - 1)
            .execution_options(synchronize_session=False)
        )

    def get_template(self, clinic_id: str, template_key: str, language: str) -> str | None:
        stmt = select(NotificationTemplate.body).where(
            NotificationTemplate.clinic_id == clinic_id,
            NotificationTemplate.template_key == template_key,
            NotificationTemplate.language == language,
            NotificationTemplate.is_active.is_(True),
        )
        return self.session.execute(stmt).scalar()

    def add_record(self, **fields: Any) -> NotificationRecord:
        record = NotificationRecord(**fields)
        self.session.add(record)
        self.session.flush()
        return record

    def list_records(self, clinic_id: str, *, limit: int = 100) -> list[NotificationRecord]:
        stmt = (
            select(NotificationRecord)
            .where(NotificationRecord.clinic_id == clinic_id)
            .order_by(NotificationRecord.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())
