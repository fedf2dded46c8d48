"""Tests for the queue state machine."""

from datetime import date

import pytest
from sqlalchemy import select

from clinic_queue.core.errors import (
    AuthorizationError,
    BusinessRuleError,
    NotFoundError,
    ValidationError,
)
from clinic_queue.events import (
    PatientAddedToQueueEvent,
    PatientCalledEvent,
    PatientMarkedAbsentEvent,
    PatientReturnedEvent,
    QueuePositionChangedEvent,
)
from clinic_queue.models import AbsenceRecord, QueueStatus
from clinic_queue.models.queue import ABSENCE_CLOSED_RETURNED, AppointmentType
from clinic_queue.services import Caller, PatientRef
from clinic_queue.services.queue_service import (
    RULE_DAY_CLOSED,
    RULE_DUPLICATE_ACTIVE_ENTRY,
    RULE_GRACE_EXPIRED,
    RULE_INVALID_TRANSITION,
    RULE_NO_OPEN_ABSENCE,
    RULE_SINGLE_IN_PROGRESS,
)

SERVICE_DATE = date(2026, 3, 16)


def _waiting_positions(queue_service, owner, clinic) -> list[int]:
    return [
        entry.position
        for entry in queue_service.get_queue(owner, clinic.id, statuses=[QueueStatus.WAITING])
    ]


# add_to_queue


def test_add_to_queue_appends_at_tail(queue_service, owner, clinic, checked_in, runtime) -> None:
    """Each check-in takes max waiting position + 1."""
    entries = checked_in(3)

    assert [entry.position for entry in entries] == [1, 2, 3]
    assert all(entry.status == QueueStatus.WAITING for entry in entries)
    assert all(entry.original_position == entry.position for entry in entries)
    assert all(entry.service_date == SERVICE_DATE for entry in entries)

    added = [e for e in runtime.bus.recent() if isinstance(e, PatientAddedToQueueEvent)]
    assert [e.position for e in added] == [1, 2, 3]
    assert added[0].performed_by == owner.user_id


def test_add_guest_patient(queue_service, owner, clinic, make_guest) -> None:
    guest = make_guest(full_name="Walk-in Amal")

    entry = queue_service.add_to_queue(
        owner, clinic.id, PatientRef.guest(guest.id), AppointmentType.EMERGENCY
    )

    assert entry.guest_patient_id == guest.id
    assert entry.patient_id is None
    assert entry.appointment_type == AppointmentType.EMERGENCY
    assert entry.patient_ref == guest.id


def test_add_rejects_duplicate_active_entry(queue_service, owner, clinic, make_patient) -> None:
    patient = make_patient()
    queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))

    with pytest.raises(ValidationError) as excinfo:
        queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))

    assert excinfo.value.rule == RULE_DUPLICATE_ACTIVE_ENTRY
    assert len(queue_service.get_queue(owner, clinic.id)) == 1


def test_add_allowed_once_absence_grace_expired(queue_service, owner, clinic, make_patient, clock) -> None:
    """An absent entry past its deadline no longer blocks a fresh check-in."""
    patient = make_patient()
    first = queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))
    queue_service.mark_absent(owner, clinic.id, first.id)

    with pytest.raises(ValidationError):
        queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))

    clock.advance(minutes=11)
    second = queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))

    assert second.id != first.id
    assert second.position == 1


def test_add_rejects_malformed_patient_reference(queue_service, owner, clinic) -> None:
    with pytest.raises(ValidationError):
        queue_service.add_to_queue(owner, clinic.id, PatientRef())
    with pytest.raises(ValidationError):
        queue_service.add_to_queue(owner, clinic.id, PatientRef(patient_id="a", guest_patient_id="b"))
    with pytest.raises(ValidationError):
        queue_service.add_to_queue(owner, clinic.id, PatientRef.registered("missing"))


def test_add_rejects_unknown_appointment_type(queue_service, owner, clinic, make_patient) -> None:
    patient = make_patient()
    with pytest.raises(ValidationError) as excinfo:
        queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id), "massage")
    assert "consultation" in excinfo.value.details["allowed"]


def test_add_rejects_guest_from_another_clinic(queue_service, owner, clinic, db_session) -> None:
    from clinic_queue.models import Clinic, GuestPatient

    other = Clinic(name="Elsewhere", owner_user_id="someone-else")
    db_session.add(other)
    db_session.commit()
    guest = GuestPatient(clinic_id=other.id, full_name="Stranger")
    db_session.add(guest)
    db_session.commit()

    with pytest.raises(ValidationError):
        queue_service.add_to_queue(owner, clinic.id, PatientRef.guest(guest.id))


# call_next_patient


def test_call_next_takes_lowest_position(queue_service, owner, clinic, checked_in, runtime) -> None:
    first, second, _ = checked_in(3)

    called = queue_service.call_next_patient(owner, clinic.id)

    assert called.id == first.id
    assert called.status == QueueStatus.IN_PROGRESS
    assert called.called_at is not None
    event = runtime.bus.recent()[-1]
    assert isinstance(event, PatientCalledEvent)
    assert event.skip_ahead is False
    assert event.next_entry_ref == second.id


def test_call_next_on_empty_queue_is_not_found(queue_service, owner, clinic) -> None:
    with pytest.raises(NotFoundError):
        queue_service.call_next_patient(owner, clinic.id)


def test_call_next_blocked_while_someone_in_progress(queue_service, owner, clinic, checked_in) -> None:
    checked_in(2)
    queue_service.call_next_patient(owner, clinic.id)

    with pytest.raises(BusinessRuleError) as excinfo:
        queue_service.call_next_patient(owner, clinic.id)

    assert excinfo.value.rule == RULE_SINGLE_IN_PROGRESS
    in_progress = queue_service.get_queue(owner, clinic.id, statuses=[QueueStatus.IN_PROGRESS])
    assert len(in_progress) == 1


# call_specific_patient


def test_call_specific_patient_skips_ahead(queue_service, owner, clinic, checked_in, fetch_entry, runtime) -> None:
    """Calling C ahead of A and B bumps their skip counts and keeps positions."""
    a, b, c = checked_in(3)

    called = queue_service.call_specific_patient(owner, clinic.id, c.id)

    assert called.status == QueueStatus.IN_PROGRESS
    reloaded_a, reloaded_b, reloaded_c = fetch_entry(a.id), fetch_entry(b.id), fetch_entry(c.id)
    assert (reloaded_a.position, reloaded_a.skip_count, reloaded_a.status) == (1, 1, QueueStatus.WAITING)
    assert (reloaded_b.position, reloaded_b.skip_count, reloaded_b.status) == (2, 1, QueueStatus.WAITING)
    assert reloaded_c.position == 3
    assert reloaded_c.status == QueueStatus.IN_PROGRESS

    event = runtime.bus.recent()[-1]
    assert isinstance(event, PatientCalledEvent)
    assert event.skip_ahead is True
    assert event.skipped_entry_refs == (a.id, b.id)
    assert event.next_entry_ref == a.id


def test_call_specific_head_is_not_a_skip(queue_service, owner, clinic, checked_in, fetch_entry, runtime) -> None:
    a, b = checked_in(2)

    queue_service.call_specific_patient(owner, clinic.id, a.id)

    assert fetch_entry(b.id).skip_count == 0
    event = runtime.bus.recent()[-1]
    assert event.skip_ahead is False
    assert event.skipped_entry_refs == ()


def test_call_specific_requires_waiting_entry(queue_service, owner, clinic, checked_in) -> None:
    a, b = checked_in(2)
    queue_service.mark_absent(owner, clinic.id, a.id)

    with pytest.raises(BusinessRuleError) as excinfo:
        queue_service.call_specific_patient(owner, clinic.id, a.id)
    assert excinfo.value.rule == RULE_INVALID_TRANSITION

    queue_service.call_specific_patient(owner, clinic.id, b.id)


def test_call_specific_unknown_entry(queue_service, owner, clinic) -> None:
    with pytest.raises(NotFoundError):
        queue_service.call_specific_patient(owner, clinic.id, "no-such-entry")


# mark_absent / mark_returned


def test_mark_absent_releases_position_and_opens_grace(
    queue_service, owner, clinic, checked_in, session_factory, clock, runtime
) -> None:
    a, _ = checked_in(2)

    absent = queue_service.mark_absent(owner, clinic.id, a.id, reason="not in waiting room")

    assert absent.status == QueueStatus.ABSENT
    assert absent.position is None
    with session_factory() as session:
        record = session.execute(
            select(AbsenceRecord).where(AbsenceRecord.entry_id == a.id)
        ).scalar_one()
        assert record.previous_position == 1
        assert record.reason == "not in waiting room"
        assert record.closed_at is None
    event = runtime.bus.recent()[-1]
    assert isinstance(event, PatientMarkedAbsentEvent)
    assert (event.grace_deadline - clock()).total_seconds() == 10 * 60


def test_mark_absent_only_from_waiting(queue_service, owner, clinic, checked_in) -> None:
    (a,) = checked_in(1)
    queue_service.call_next_patient(owner, clinic.id)

    with pytest.raises(BusinessRuleError):
        queue_service.mark_absent(owner, clinic.id, a.id)


def test_return_within_grace_requeues_at_tail(
    queue_service, owner, clinic, checked_in, clock, session_factory, runtime
) -> None:
    """Returning at minute 9 of a 10 minute grace re-queues at max + 1."""
    a, _, _ = checked_in(3)
    queue_service.mark_absent(owner, clinic.id, a.id)

    clock.advance(minutes=9)
    returned = queue_service.mark_returned(owner, clinic.id, a.id)

    assert returned.status == QueueStatus.WAITING
    assert returned.position == 4
    assert returned.original_position == 1
    with session_factory() as session:
        record = session.execute(
            select(AbsenceRecord).where(AbsenceRecord.entry_id == a.id)
        ).scalar_one()
        assert record.closed_reason == ABSENCE_CLOSED_RETURNED
        assert record.new_position == 4
        assert record.returned_at is not None
    event = runtime.bus.recent()[-1]
    assert isinstance(event, PatientReturnedEvent)
    assert event.new_position == 4


def test_return_after_grace_is_rejected(queue_service, owner, clinic, checked_in, clock, fetch_entry) -> None:
    """Returning at minute 11 fails and leaves the entry absent."""
    (a,) = checked_in(1)
    queue_service.mark_absent(owner, clinic.id, a.id)

    clock.advance(minutes=11)
    with pytest.raises(BusinessRuleError) as excinfo:
        queue_service.mark_returned(owner, clinic.id, a.id)

    assert excinfo.value.rule == RULE_GRACE_EXPIRED
    assert fetch_entry(a.id).status == QueueStatus.ABSENT


def test_return_at_exact_deadline_is_accepted(queue_service, owner, clinic, checked_in, clock) -> None:
    (a,) = checked_in(1)
    queue_service.mark_absent(owner, clinic.id, a.id)

    clock.advance(minutes=10)
    assert queue_service.mark_returned(owner, clinic.id, a.id).status == QueueStatus.WAITING


def test_clinic_grace_override(queue_service, owner, clinic, checked_in, clock, db_session) -> None:
    clinic.absent_grace_period_minutes = 3
    db_session.merge(clinic)
    db_session.commit()
    (a,) = checked_in(1)
    queue_service.mark_absent(owner, clinic.id, a.id)

    clock.advance(minutes=4)
    with pytest.raises(BusinessRuleError):
        queue_service.mark_returned(owner, clinic.id, a.id)


def test_return_requires_open_absence(queue_service, owner, clinic, checked_in) -> None:
    (a,) = checked_in(1)
    with pytest.raises(BusinessRuleError) as excinfo:
        queue_service.mark_returned(owner, clinic.id, a.id)
    assert excinfo.value.rule == RULE_NO_OPEN_ABSENCE


# complete_appointment


def test_complete_appointment(queue_service, owner, clinic, checked_in) -> None:
    a, b = checked_in(2)
    queue_service.call_next_patient(owner, clinic.id)

    done = queue_service.complete_appointment(owner, clinic.id, a.id)

    assert done.status == QueueStatus.COMPLETED
    assert done.completed_at is not None
    assert queue_service.call_next_patient(owner, clinic.id).id == b.id


def test_complete_requires_in_progress(queue_service, owner, clinic, checked_in) -> None:
    (a,) = checked_in(1)
    with pytest.raises(BusinessRuleError) as excinfo:
        queue_service.complete_appointment(owner, clinic.id, a.id)
    assert excinfo.value.rule == RULE_INVALID_TRANSITION


def test_completed_is_terminal(queue_service, owner, clinic, checked_in) -> None:
    (a,) = checked_in(1)
    queue_service.call_next_patient(owner, clinic.id)
    queue_service.complete_appointment(owner, clinic.id, a.id)

    with pytest.raises(BusinessRuleError):
        queue_service.complete_appointment(owner, clinic.id, a.id)
    with pytest.raises(BusinessRuleError):
        queue_service.mark_absent(owner, clinic.id, a.id)


# reorder_entry


def test_reorder_moves_entry_forward(queue_service, owner, clinic, checked_in, fetch_entry, runtime) -> None:
    entries = checked_in(4)

    moved = queue_service.reorder_entry(owner, clinic.id, entries[3].id, 1, reason="urgent")

    assert moved.position == 1
    assert [fetch_entry(e.id).position for e in entries] == [2, 3, 4, 1]
    event = runtime.bus.recent()[-1]
    assert isinstance(event, QueuePositionChangedEvent)
    assert (event.old_position, event.new_position, event.reason) == (4, 1, "urgent")
    assert {entry_id for entry_id, _, _ in event.displaced} == {e.id for e in entries[:3]}


def test_reorder_moves_entry_backward(queue_service, owner, clinic, checked_in, fetch_entry) -> None:
    entries = checked_in(4)

    queue_service.reorder_entry(owner, clinic.id, entries[0].id, 3)

    assert [fetch_entry(e.id).position for e in entries] == [3, 1, 2, 4]


def test_reorder_keeps_positions_unique_across_gaps(queue_service, owner, clinic, checked_in) -> None:
    entries = checked_in(4)
    queue_service.mark_absent(owner, clinic.id, entries[1].id)

    queue_service.reorder_entry(owner, clinic.id, entries[3].id, 1)

    positions = _waiting_positions(queue_service, owner, clinic)
    assert len(positions) == len(set(positions)) == 3
    assert positions[0] == 1


def test_reorder_into_empty_slot_past_tail(queue_service, owner, clinic, checked_in, fetch_entry) -> None:
    entries = checked_in(2)

    queue_service.reorder_entry(owner, clinic.id, entries[0].id, 5)

    assert fetch_entry(entries[0].id).position == 5
    assert fetch_entry(entries[1].id).position == 2


@pytest.mark.parametrize("bad_position", [0, -1, True, "2"])
def test_reorder_rejects_bad_positions(queue_service, owner, clinic, checked_in, bad_position) -> None:
    (a,) = checked_in(1)
    with pytest.raises(ValidationError):
        queue_service.reorder_entry(owner, clinic.id, a.id, bad_position)


def test_reorder_requires_waiting_entry(queue_service, owner, clinic, checked_in) -> None:
    a, _ = checked_in(2)
    queue_service.call_next_patient(owner, clinic.id)
    with pytest.raises(BusinessRuleError):
        queue_service.reorder_entry(owner, clinic.id, a.id, 2)


# authorization


def test_staff_may_operate_queue(queue_service, receptionist, clinic, make_patient) -> None:
    patient = make_patient()
    entry = queue_service.add_to_queue(receptionist, clinic.id, PatientRef.registered(patient.id))
    assert entry.position == 1


def test_outsiders_are_rejected(queue_service, clinic, make_patient, inactive_staff) -> None:
    patient = make_patient()
    with pytest.raises(AuthorizationError):
        queue_service.add_to_queue(Caller("stranger"), clinic.id, PatientRef.registered(patient.id))
    with pytest.raises(AuthorizationError):
        queue_service.add_to_queue(inactive_staff, clinic.id, PatientRef.registered(patient.id))
    with pytest.raises(AuthorizationError):
        queue_service.get_queue(Caller(""), clinic.id)


def test_unknown_clinic(queue_service, owner) -> None:
    with pytest.raises(NotFoundError):
        queue_service.call_next_patient(owner, "no-such-clinic")


def test_entry_of_another_clinic_is_not_found(queue_service, owner, clinic, checked_in, db_session) -> None:
    from clinic_queue.models import Clinic

    (a,) = checked_in(1)
    other = Clinic(name="Other", owner_user_id=owner.user_id)
    db_session.add(other)
    db_session.commit()

    with pytest.raises(NotFoundError):
        queue_service.mark_absent(owner, other.id, a.id)


# closed day guard


def test_mutations_rejected_on_closed_day(queue_service, owner, clinic, checked_in, make_patient) -> None:
    a, b = checked_in(2)
    queue_service.end_day(owner, clinic.id)

    patient = make_patient()
    with pytest.raises(BusinessRuleError) as excinfo:
        queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))
    assert excinfo.value.rule == RULE_DAY_CLOSED
    with pytest.raises(BusinessRuleError):
        queue_service.call_next_patient(owner, clinic.id)


def test_other_days_are_independent(queue_service, owner, clinic, make_patient) -> None:
    patient = make_patient()
    today = queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))
    tomorrow = queue_service.add_to_queue(
        owner,
        clinic.id,
        PatientRef.registered(patient.id),
        service_date=date(2026, 3, 17),
    )

    assert today.position == tomorrow.position == 1
    assert tomorrow.service_date == date(2026, 3, 17)


# reads


def test_queue_summary(queue_service, owner, clinic, checked_in, clock) -> None:
    a, b, c = checked_in(3)
    clock.advance(minutes=12)
    queue_service.call_next_patient(owner, clinic.id)
    queue_service.complete_appointment(owner, clinic.id, a.id)
    queue_service.mark_absent(owner, clinic.id, c.id)

    summary = queue_service.get_queue_summary(owner, clinic.id)

    assert summary.counts["completed"] == 1
    assert summary.counts["absent"] == 1
    assert summary.queue_length == 1
    assert summary.open_absences == 1
    assert summary.in_progress_entry_id is None
    assert summary.average_wait_minutes == 12.0
    assert summary.day_closed is False


def test_get_queue_filters_by_status(queue_service, owner, clinic, checked_in) -> None:
    a, b = checked_in(2)
    queue_service.mark_absent(owner, clinic.id, a.id)

    absent = queue_service.get_queue(owner, clinic.id, statuses=["absent"])
    assert [entry.id for entry in absent] == [a.id]

    with pytest.raises(ValidationError):
        queue_service.get_queue(owner, clinic.id, statuses=["lost"])
