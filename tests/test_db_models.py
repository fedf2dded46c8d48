"""Unit tests for the ORM models defined in clinic_queue.models.

These tests verify mapping details the queue relies on: table names, the
partial unique indexes that back the queue invariants, and the status
transition table.
"""

import pytest

from clinic_queue.models import (
    DayClosure,
    NotificationBudget,
    QueueEntry,
    QueueOverride,
    QueueStatus,
)
from clinic_queue.models.queue import ACTIVE_STATUSES, can_transition


def test_table_names():
    """Model classes expose expected __tablename__ values."""
    assert QueueEntry.__tablename__ == "queue_entry"
    assert DayClosure.__tablename__ == "day_closure"
    assert QueueOverride.__tablename__ == "queue_override"
    assert NotificationBudget.__tablename__ == "notification_budget"


def _index(table, name):
    return next(index for index in table.indexes if index.name == name)


def test_waiting_position_index_is_partial_and_unique():
    index = _index(QueueEntry.__table__, "uq_queue_entry_waiting_position")
    assert index.unique
    assert [column.name for column in index.columns] == ["clinic_id", "service_date", "position"]
    assert "waiting" in str(index.dialect_options["postgresql"]["where"])
    assert "waiting" in str(index.dialect_options["sqlite"]["where"])


def test_single_in_progress_index():
    index = _index(QueueEntry.__table__, "uq_queue_entry_single_in_progress")
    assert index.unique
    assert "in_progress" in str(index.dialect_options["postgresql"]["where"])


def test_one_active_closure_per_day():
    index = _index(DayClosure.__table__, "uq_day_closure_active")
    assert index.unique
    assert "reopened_at IS NULL" in str(index.dialect_options["postgresql"]["where"])


def test_audit_event_id_is_unique():
    assert QueueOverride.__table__.c.event_id.unique


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (QueueStatus.WAITING, QueueStatus.IN_PROGRESS, True),
        (QueueStatus.WAITING, QueueStatus.ABSENT, True),
        (QueueStatus.WAITING, QueueStatus.COMPLETED, False),
        (QueueStatus.IN_PROGRESS, QueueStatus.COMPLETED, True),
        (QueueStatus.IN_PROGRESS, QueueStatus.WAITING, False),
        (QueueStatus.ABSENT, QueueStatus.WAITING, True),
        (QueueStatus.ABSENT, QueueStatus.IN_PROGRESS, False),
        (QueueStatus.COMPLETED, QueueStatus.WAITING, False),
        (QueueStatus.NO_SHOW, QueueStatus.WAITING, True),
        (QueueStatus.NO_SHOW, QueueStatus.IN_PROGRESS, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_statuses_are_not_active():
    assert QueueStatus.COMPLETED not in ACTIVE_STATUSES
    assert QueueStatus.NO_SHOW not in ACTIVE_STATUSES


def test_budget_remaining_never_negative():
    budget = NotificationBudget(clinic_id="c", monthly_limit=5, sent_count=7)
    assert budget.remaining == 0
