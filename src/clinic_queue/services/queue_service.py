"""Queue state machine for one clinic's live patient queue.

Every mutating operation follows the same sequence:

1. authorize the caller against the clinic,
2. take the clinic-day exclusive section,
3. read current state, validate the transition, write it in one
   transaction,
4. after commit, publish exactly one domain event.

Subscribers react on the bus; their outcome never changes the result of the
operation that triggered them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from clinic_queue.core.errors import (
    AuthorizationError,
    BusinessRuleError,
    ConcurrencyError,
    NotFoundError,
    ValidationError,
)
from clinic_queue.core.settings import settings
from clinic_queue.db.time import as_utc, utcnow
from clinic_queue.events import (
    AppointmentStatusChangedEvent,
    DayClosedEvent,
    DayReopenedEvent,
    EventBus,
    PatientAddedToQueueEvent,
    PatientCalledEvent,
    PatientMarkedAbsentEvent,
    PatientReturnedEvent,
    QueueEvent,
    QueuePositionChangedEvent,
)
from clinic_queue.models import Clinic, DayClosure, QueueEntry
from clinic_queue.models.clinic import PRIVILEGED_STAFF_ROLES
from clinic_queue.models.queue import (
    ABSENCE_CLOSED_DAY_END,
    ABSENCE_CLOSED_RETURNED,
    AppointmentType,
    QueueStatus,
    can_transition,
)
from clinic_queue.repositories import ClinicRepository, QueueRepository
from clinic_queue.services.locks import ClinicDayLocks

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Rule names reported on BusinessRuleError.
RULE_DAY_CLOSED = "day_closed"
RULE_DAY_ALREADY_CLOSED = "day_already_closed"
RULE_SINGLE_IN_PROGRESS = "single_in_progress"
RULE_INVALID_TRANSITION = "invalid_transition"
RULE_NO_OPEN_ABSENCE = "no_open_absence"
RULE_GRACE_EXPIRED = "grace_period_expired"
RULE_REOPEN_WINDOW_EXPIRED = "reopen_window_expired"
RULE_ALREADY_REOPENED = "closure_already_reopened"
RULE_DUPLICATE_ACTIVE_ENTRY = "duplicate_active_entry"


@dataclass(frozen=True)
class Caller:
    """Identity of the staff member invoking an operation."""

    user_id: str


@dataclass(frozen=True)
class PatientRef:
    """Reference to a registered patient or a walk-in guest; exactly one is set."""

    patient_id: str | None = None
    guest_patient_id: str | None = None

    @classmethod
    def registered(cls, patient_id: str) -> PatientRef:
        return cls(patient_id=patient_id)

    @classmethod
    def guest(cls, guest_patient_id: str) -> PatientRef:
        return cls(guest_patient_id=guest_patient_id)

    def validate(self) -> None:
        ids = [value for value in (self.patient_id, self.guest_patient_id) if value is not None]
        if len(ids) != 1:
            raise ValidationError("Exactly one of patient_id or guest_patient_id is required")
        if not isinstance(ids[0], str) or not ids[0].strip():
            raise ValidationError("Patient reference must be a non-empty identifier")


@dataclass(frozen=True)
class DayCloseResult:
    """Outcome of a successful end-of-day finalization."""

    closure: DayClosure
    counts: dict[str, int]


@dataclass(frozen=True)
class DayClosurePreview:
    """What an end-of-day finalization would do right now."""

    clinic_id: str
    service_date: date
    already_closed: bool
    counts: dict[str, int]
    would_mark_no_show: list[str]
    would_complete: list[str]


@dataclass(frozen=True)
class QueueSummary:
    clinic_id: str
    service_date: date
    counts: dict[str, int]
    queue_length: int
    open_absences: int
    in_progress_entry_id: str | None
    average_wait_minutes: float | None
    day_closed: bool


@dataclass
class _UnitOfWork:
    repo: QueueRepository
    clinic: Clinic
    caller: Caller
    service_date: date
    now: datetime
    events: list[QueueEvent] = field(default_factory=list)

    def event_fields(self) -> dict[str, Any]:
        return {
            "clinic_id": self.clinic.id,
            "service_date": self.service_date,
            "performed_by": self.caller.user_id,
            "occurred_at": self.now,
        }


def _status_counts(counts: dict[QueueStatus, int]) -> dict[str, int]:
    return {status.value: counts.get(status, 0) for status in QueueStatus}


def _require_reason(reason: str | None, action: str) -> str:
    if reason is None or not reason.strip():
        raise ValidationError(f"A reason is required to {action}")
    return reason.strip()


class QueueService:
    """Validates and executes queue transitions for every clinic-day."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        bus: EventBus,
        *,
        locks: ClinicDayLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
        grace_period_minutes: int | None = None,
        reopen_window_minutes: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._bus = bus
        self._locks = locks or ClinicDayLocks(settings.queue_lock_timeout_seconds)
        self._clock = clock
        self._grace_period_minutes = (
            settings.absent_grace_period_minutes
            if grace_period_minutes is None
            else grace_period_minutes
        )
        self._reopen_window_minutes = (
            settings.day_reopen_window_minutes
            if reopen_window_minutes is None
            else reopen_window_minutes
        )

    # Plumbing

    def _now(self) -> datetime:
        return as_utc(self._clock())

    def _today(self) -> date:
        return self._now().date()

    def _authorize(
        self,
        session: Session,
        clinic_id: str,
        caller: Caller,
        *,
        privileged: bool = False,
    ) -> Clinic:
        """Return the clinic when ``caller`` may act on it.

        Owners may do anything. Active staff may run the queue; privileged
        operations additionally need one of ``PRIVILEGED_STAFF_ROLES``.
        """
        if not caller.user_id:
            raise AuthorizationError("An identified caller is required")
        clinics = ClinicRepository(session)
        clinic = clinics.get_clinic(clinic_id)
        if clinic is None:
            raise NotFoundError("clinic", clinic_id)
        if clinic.owner_user_id == caller.user_id:
            return clinic
        membership = clinics.get_staff_membership(clinic_id, caller.user_id)
        if membership is None or not membership.is_active:
            raise AuthorizationError(
                "Caller is not an owner or active staff member of this clinic",
                details={"clinic_id": clinic_id},
            )
        if privileged and membership.role not in PRIVILEGED_STAFF_ROLES:
            raise AuthorizationError(
                "This action is restricted to the clinic owner or a manager",
                details={"clinic_id": clinic_id, "role": membership.role},
            )
        return clinic

    def _execute(
        self,
        caller: Caller,
        clinic_id: str,
        service_date: date,
        work: Callable[[_UnitOfWork], T],
        *,
        privileged: bool = False,
    ) -> T:
        """Run ``work`` inside the clinic-day exclusive section and one transaction.

        Events collected on the unit of work are published only after the
        commit succeeded, while the exclusive section is still held, so one
        clinic-day publishes in commit order.
        """
        with self._locks.hold(clinic_id, service_date):
            session = self._session_factory()
            try:
                repo = QueueRepository(session)

                def in_transaction(tx_repo: QueueRepository) -> tuple[T, list[QueueEvent]]:
                    clinic = self._authorize(session, clinic_id, caller, privileged=privileged)
                    tx_repo.lock_clinic_day(clinic_id, service_date)
                    uow = _UnitOfWork(
                        repo=tx_repo,
                        clinic=clinic,
                        caller=caller,
                        service_date=service_date,
                        now=self._now(),
                    )
                    return work(uow), uow.events

                result, events = repo.run_in_transaction(in_transaction)
            except (IntegrityError, OperationalError) as exc:
                logger.warning(
                    "Queue transaction conflict clinic=%s date=%s: %s",
                    clinic_id,
                    service_date,
                    exc.orig if exc.orig is not None else exc,
                )
                raise ConcurrencyError(
                    "The queue changed concurrently; reload and retry",
                    details={"clinic_id": clinic_id, "service_date": service_date.isoformat()},
                ) from exc
            finally:
                session.close()

            for event in events:
                self._bus.publish(event)
        return result

    def _locate_entry(self, caller: Caller, clinic_id: str, entry_id: str) -> date:
        """Authorize and return the service date of ``entry_id``."""
        if not entry_id or not isinstance(entry_id, str):
            raise ValidationError("An entry reference is required")
        with self._session_factory() as session:
            self._authorize(session, clinic_id, caller)
            entry = QueueRepository(session).get_entry(entry_id)
            if entry is None or entry.clinic_id != clinic_id:
                raise NotFoundError("queue entry", entry_id)
            return entry.service_date

    @staticmethod
    def _load_entry(uow: _UnitOfWork, entry_id: str) -> QueueEntry:
        entry = uow.repo.get_entry(entry_id)
        if entry is None or entry.clinic_id != uow.clinic.id:
            raise NotFoundError("queue entry", entry_id)
        return entry

    @staticmethod
    def _ensure_day_open(uow: _UnitOfWork) -> None:
        if uow.repo.get_active_closure(uow.clinic.id, uow.service_date) is not None:
            raise BusinessRuleError(
                "The queue for this day is closed; reopen it before making changes",
                rule=RULE_DAY_CLOSED,
                details={"service_date": uow.service_date.isoformat()},
            )

    @staticmethod
    def _ensure_nobody_in_progress(uow: _UnitOfWork) -> None:
        current = uow.repo.get_in_progress(uow.clinic.id, uow.service_date)
        if current is not None:
            raise BusinessRuleError(
                "Another patient is already in progress; complete that appointment first",
                rule=RULE_SINGLE_IN_PROGRESS,
                details={"in_progress_entry_id": current.id},
            )

    @staticmethod
    def _check_transition(entry: QueueEntry, target: QueueStatus) -> None:
        if not can_transition(entry.status, target):
            raise BusinessRuleError(
                f"Cannot move an entry from {entry.status.value} to {target.value}",
                rule=RULE_INVALID_TRANSITION,
                details={
                    "entry_id": entry.id,
                    "current_status": entry.status.value,
                    "target_status": target.value,
                },
            )

    def _grace_minutes(self, clinic: Clinic) -> int:
        if clinic.absent_grace_period_minutes is not None:
            return clinic.absent_grace_period_minutes
        return self._grace_period_minutes

    # Mutations

    def add_to_queue(
        self,
        caller: Caller,
        clinic_id: str,
        patient: PatientRef,
        appointment_type: AppointmentType | str = AppointmentType.CONSULTATION,
        *,
        service_date: date | None = None,
    ) -> QueueEntry:
        """Append a patient to the tail of the clinic-day queue.

        Raises:
            ValidationError: malformed or unknown patient reference, unknown
                appointment type, or an active entry already exists for the
                patient on that day.
        """
        patient.validate()
        try:
            kind = AppointmentType(appointment_type)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown appointment type '{appointment_type}'",
                details={"allowed": [member.value for member in AppointmentType]},
            ) from exc
        day = service_date or self._today()

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            self._check_patient_exists(uow, patient)
            self._check_no_duplicate(uow, patient)

            position = uow.repo.max_waiting_position(uow.clinic.id, day) + 1
            entry = uow.repo.create_queue_entry(
                clinic_id=uow.clinic.id,
                service_date=day,
                patient_id=patient.patient_id,
                guest_patient_id=patient.guest_patient_id,
                appointment_type=kind,
                status=QueueStatus.WAITING,
                position=position,
                original_position=position,
                skip_count=0,
                checked_in_at=uow.now,
            )
            uow.events.append(
                PatientAddedToQueueEvent(
                    **uow.event_fields(),
                    entry_ref=entry.id,
                    patient_ref=entry.patient_ref,
                    position=position,
                    appointment_type=kind.value,
                )
            )
            logger.info(
                "Added entry %s to clinic=%s date=%s at position %d",
                entry.id,
                uow.clinic.id,
                day,
                position,
            )
            return entry

        return self._execute(caller, clinic_id, day, work)

    @staticmethod
    def _check_patient_exists(uow: _UnitOfWork, patient: PatientRef) -> None:
        clinics = ClinicRepository(uow.repo.session)
        if patient.patient_id is not None:
            if clinics.get_patient(patient.patient_id) is None:
                raise ValidationError(f"Unknown patient '{patient.patient_id}'")
            return
        guest = clinics.get_guest_patient(patient.guest_patient_id or "")
        if guest is None or guest.clinic_id != uow.clinic.id:
            raise ValidationError(f"Unknown guest patient '{patient.guest_patient_id}'")

    @staticmethod
    def _check_no_duplicate(uow: _UnitOfWork, patient: PatientRef) -> None:
        """Reject a second active entry; an absent entry past its grace deadline does not count."""
        active = uow.repo.list_active_entries_for_patient(
            uow.clinic.id,
            uow.service_date,
            patient_id=patient.patient_id,
            guest_patient_id=patient.guest_patient_id,
        )
        for existing in active:
            if existing.status == QueueStatus.ABSENT:
                absence = uow.repo.get_open_absence(existing.id)
                if absence is not None and uow.now > as_utc(absence.grace_deadline):
                    continue
            raise ValidationError(
                "Patient already has an active entry in today's queue",
                rule=RULE_DUPLICATE_ACTIVE_ENTRY,
                details={"entry_id": existing.id, "status": existing.status.value},
            )

    def call_next_patient(
        self,
        caller: Caller,
        clinic_id: str,
        *,
        service_date: date | None = None,
    ) -> QueueEntry:
        """Start the appointment of the lowest-position waiting entry."""
        day = service_date or self._today()

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            self._ensure_nobody_in_progress(uow)
            waiting = uow.repo.get_waiting(uow.clinic.id, day)
            if not waiting:
                raise NotFoundError("waiting patient")
            head = waiting[0]
            self._check_transition(head, QueueStatus.IN_PROGRESS)
            uow.repo.update_queue_entry(
                head.id,
                {"status": QueueStatus.IN_PROGRESS, "called_at": uow.now},
            )
            uow.events.append(
                PatientCalledEvent(
                    **uow.event_fields(),
                    entry_ref=head.id,
                    position=head.position,
                    next_entry_ref=waiting[1].id if len(waiting) > 1 else None,
                )
            )
            logger.info("Called entry %s at position %s", head.id, head.position)
            return head

        return self._execute(caller, clinic_id, day, work)

    def call_specific_patient(self, caller: Caller, clinic_id: str, entry_id: str) -> QueueEntry:
        """Skip ahead: start a named waiting entry out of order.

        Every waiting entry positioned before the called one gains one skip.
        Positions are left untouched.
        """
        day = self._locate_entry(caller, clinic_id, entry_id)

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            entry = self._load_entry(uow, entry_id)
            if entry.status != QueueStatus.WAITING:
                raise BusinessRuleError(
                    "Only a waiting patient can be called",
                    rule=RULE_INVALID_TRANSITION,
                    details={"entry_id": entry.id, "current_status": entry.status.value},
                )
            self._ensure_nobody_in_progress(uow)
            self._check_transition(entry, QueueStatus.IN_PROGRESS)

            called_position = entry.position
            waiting = [
                other
                for other in uow.repo.get_waiting(uow.clinic.id, day)
                if other.id != entry.id
            ]
            skipped = [
                other
                for other in waiting
                if called_position is not None
                and other.position is not None
                and other.position < called_position
            ]
            for other in skipped:
                uow.repo.update_queue_entry(other.id, {"skip_count": other.skip_count + 1})
            uow.repo.update_queue_entry(
                entry.id,
                {"status": QueueStatus.IN_PROGRESS, "called_at": uow.now},
            )
            uow.events.append(
                PatientCalledEvent(
                    **uow.event_fields(),
                    entry_ref=entry.id,
                    position=called_position,
                    skip_ahead=bool(skipped),
                    skipped_entry_refs=tuple(other.id for other in skipped),
                    next_entry_ref=waiting[0].id if waiting else None,
                )
            )
            logger.info(
                "Called entry %s out of order; %d waiting entr%s skipped",
                entry.id,
                len(skipped),
                "y" if len(skipped) == 1 else "ies",
            )
            return entry

        return self._execute(caller, clinic_id, day, work)

    def mark_absent(
        self,
        caller: Caller,
        clinic_id: str,
        entry_id: str,
        reason: str | None = None,
    ) -> QueueEntry:
        """Mark a waiting entry absent and open its grace period."""
        day = self._locate_entry(caller, clinic_id, entry_id)

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            entry = self._load_entry(uow, entry_id)
            if entry.status != QueueStatus.WAITING:
                raise BusinessRuleError(
                    "Only a waiting patient can be marked absent",
                    rule=RULE_INVALID_TRANSITION,
                    details={"entry_id": entry.id, "current_status": entry.status.value},
                )
            self._check_transition(entry, QueueStatus.ABSENT)

            previous_position = entry.position
            deadline = uow.now + timedelta(minutes=self._grace_minutes(uow.clinic))
            uow.repo.update_queue_entry(entry.id, {"status": QueueStatus.ABSENT, "position": None})
            uow.repo.create_absence_record(
                entry_id=entry.id,
                clinic_id=uow.clinic.id,
                marked_by=uow.caller.user_id,
                reason=reason,
                previous_position=previous_position,
                marked_at=uow.now,
                grace_deadline=deadline,
            )
            uow.events.append(
                PatientMarkedAbsentEvent(
                    **uow.event_fields(),
                    entry_ref=entry.id,
                    previous_position=previous_position,
                    grace_deadline=deadline,
                    reason=reason,
                )
            )
            logger.info("Marked entry %s absent until %s", entry.id, deadline.isoformat())
            return entry

        return self._execute(caller, clinic_id, day, work)

    def mark_returned(self, caller: Caller, clinic_id: str, entry_id: str) -> QueueEntry:
        """Re-queue an absent patient at the tail while the grace period lasts."""
        day = self._locate_entry(caller, clinic_id, entry_id)

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            entry = self._load_entry(uow, entry_id)
            absence = uow.repo.get_open_absence(entry.id)
            if entry.status != QueueStatus.ABSENT or absence is None:
                raise BusinessRuleError(
                    "Patient is not currently marked absent",
                    rule=RULE_NO_OPEN_ABSENCE,
                    details={"entry_id": entry.id, "current_status": entry.status.value},
                )
            deadline = as_utc(absence.grace_deadline)
            if uow.now > deadline:
                raise BusinessRuleError(
                    "Grace period has expired; add the patient to the queue as a new entry",
                    rule=RULE_GRACE_EXPIRED,
                    details={"entry_id": entry.id, "grace_deadline": deadline.isoformat()},
                )
            self._check_transition(entry, QueueStatus.WAITING)

            position = uow.repo.max_waiting_position(uow.clinic.id, day) + 1
            uow.repo.update_queue_entry(
                entry.id,
                {"status": QueueStatus.WAITING, "position": position},
            )
            uow.repo.close_absence_record(
                absence,
                closed_at=uow.now,
                reason=ABSENCE_CLOSED_RETURNED,
                returned_at=uow.now,
                new_position=position,
            )
            uow.events.append(
                PatientReturnedEvent(
                    **uow.event_fields(),
                    entry_ref=entry.id,
                    new_position=position,
                    returned_at=uow.now,
                )
            )
            logger.info("Entry %s returned and re-queued at position %d", entry.id, position)
            return entry

        return self._execute(caller, clinic_id, day, work)

    def complete_appointment(self, caller: Caller, clinic_id: str, entry_id: str) -> QueueEntry:
        """Finish the in-progress appointment of ``entry_id``."""
        day = self._locate_entry(caller, clinic_id, entry_id)

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            entry = self._load_entry(uow, entry_id)
            self._check_transition(entry, QueueStatus.COMPLETED)
            old_status = entry.status
            uow.repo.update_queue_entry(
                entry.id,
                {"status": QueueStatus.COMPLETED, "completed_at": uow.now},
            )
            uow.events.append(
                AppointmentStatusChangedEvent(
                    **uow.event_fields(),
                    entry_ref=entry.id,
                    old_status=old_status.value,
                    new_status=QueueStatus.COMPLETED.value,
                    old_position=entry.position,
                    new_position=entry.position,
                )
            )
            logger.info("Completed appointment for entry %s", entry.id)
            return entry

        return self._execute(caller, clinic_id, day, work)

    def reorder_entry(
        self,
        caller: Caller,
        clinic_id: str,
        entry_id: str,
        new_position: int,
        reason: str | None = None,
    ) -> QueueEntry:
        """Move a waiting entry to ``new_position``.

        Occupants between the target and the vacated slot shift by one
        toward the vacated slot; a gap in the sparse positions stops the
        shift early.
        """
        if isinstance(new_position, bool) or not isinstance(new_position, int) or new_position < 1:
            raise ValidationError("Position must be a positive integer")
        day = self._locate_entry(caller, clinic_id, entry_id)

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            entry = self._load_entry(uow, entry_id)
            if entry.status != QueueStatus.WAITING or entry.position is None:
                raise BusinessRuleError(
                    "Only a waiting patient can be reordered",
                    rule=RULE_INVALID_TRANSITION,
                    details={"entry_id": entry.id, "current_status": entry.status.value},
                )
            old_position = entry.position
            if new_position == old_position:
                raise ValidationError("Entry is already at that position")

            occupants = {
                other.position: other
                for other in uow.repo.get_waiting(uow.clinic.id, day)
                if other.id != entry.id and other.position is not None
            }
            step = 1 if new_position < old_position else -1
            chain: list[QueueEntry] = []
            cursor = new_position
            while cursor != old_position and cursor in occupants:
                chain.append(occupants[cursor])
                cursor += step

            # Free the slot first so every intermediate state satisfies the unique index.
            uow.repo.update_queue_entry(entry.id, {"position": None})
            displaced: list[tuple[str, int, int]] = []
            for other in reversed(chain):
                before = other.position
                uow.repo.update_queue_entry(other.id, {"position": before + step})
                displaced.append((other.id, before, before + step))
            uow.repo.update_queue_entry(entry.id, {"position": new_position})

            uow.events.append(
                QueuePositionChangedEvent(
                    **uow.event_fields(),
                    entry_ref=entry.id,
                    old_position=old_position,
                    new_position=new_position,
                    reason=reason,
                    displaced=tuple(reversed(displaced)),
                )
            )
            logger.info(
                "Moved entry %s from position %d to %d (%d displaced)",
                entry.id,
                old_position,
                new_position,
                len(displaced),
            )
            return entry

        return self._execute(caller, clinic_id, day, work)

    def restore_entry(
        self,
        caller: Caller,
        clinic_id: str,
        entry_id: str,
        reason: str | None,
    ) -> QueueEntry:
        """Put a no-show entry back at the tail of a reopened day."""
        reason_text = _require_reason(reason, "restore an entry")
        day = self._locate_entry(caller, clinic_id, entry_id)

        def work(uow: _UnitOfWork) -> QueueEntry:
            self._ensure_day_open(uow)
            entry = self._load_entry(uow, entry_id)
            if entry.status != QueueStatus.NO_SHOW:
                raise BusinessRuleError(
                    "Only a no-show entry can be restored",
                    rule=RULE_INVALID_TRANSITION,
                    details={"entry_id": entry.id, "current_status": entry.status.value},
                )
            self._check_transition(entry, QueueStatus.WAITING)
            patient = PatientRef(
                patient_id=entry.patient_id,
                guest_patient_id=entry.guest_patient_id,
            )
            self._check_no_duplicate(uow, patient)

            position = uow.repo.max_waiting_position(uow.clinic.id, day) + 1
            uow.repo.update_queue_entry(
                entry.id,
                {"status": QueueStatus.WAITING, "position": position},
            )
            uow.events.append(
                AppointmentStatusChangedEvent(
                    **uow.event_fields(),
                    entry_ref=entry.id,
                    old_status=QueueStatus.NO_SHOW.value,
                    new_status=QueueStatus.WAITING.value,
                    old_position=None,
                    new_position=position,
                    reason=reason_text,
                )
            )
            logger.info("Restored no-show entry %s at position %d", entry.id, position)
            return entry

        return self._execute(caller, clinic_id, day, work)

    # Day closure

    def end_day(
        self,
        caller: Caller,
        clinic_id: str,
        *,
        service_date: date | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> DayCloseResult:
        """Finalize a clinic-day in one transaction.

        Waiting and absent entries become no_show, the in-progress entry is
        completed, and a DayClosure row records what happened. Every planned
        transition is validated before the first write; any failure aborts
        the whole closure.
        """
        day = service_date or self._today()

        def work(uow: _UnitOfWork) -> DayCloseResult:
            repo = uow.repo
            existing = repo.get_active_closure(uow.clinic.id, day)
            if existing is not None:
                raise BusinessRuleError(
                    "This day has already been closed",
                    rule=RULE_DAY_ALREADY_CLOSED,
                    details={"closure_id": existing.id},
                )

            entries = repo.get_queue_by_date(uow.clinic.id, day)
            before = repo.count_by_status(uow.clinic.id, day)
            plan = list(self._closure_plan(entries))
            for entry, target in plan:
                self._check_transition(entry, target)

            open_absences = {
                record.entry_id: record for record in repo.list_open_absences(uow.clinic.id, day)
            }
            no_show_ids: list[str] = []
            completed_ids: list[str] = []
            for entry, target in plan:
                if target == QueueStatus.NO_SHOW:
                    absence = open_absences.get(entry.id)
                    if absence is not None:
                        repo.close_absence_record(
                            absence,
                            closed_at=uow.now,
                            reason=ABSENCE_CLOSED_DAY_END,
                        )
                    repo.update_queue_entry(
                        entry.id,
                        {"status": QueueStatus.NO_SHOW, "position": None},
                    )
                    no_show_ids.append(entry.id)
                else:
                    repo.update_queue_entry(
                        entry.id,
                        {"status": QueueStatus.COMPLETED, "completed_at": uow.now},
                    )
                    completed_ids.append(entry.id)

            closure = repo.create_day_closure(
                clinic_id=uow.clinic.id,
                service_date=day,
                performed_by=uow.caller.user_id,
                closed_at=uow.now,
                reason=reason,
                notes=notes,
                total_entries=len(entries),
                waiting_count=before[QueueStatus.WAITING],
                absent_count=before[QueueStatus.ABSENT],
                in_progress_count=before[QueueStatus.IN_PROGRESS],
                completed_count=before[QueueStatus.COMPLETED],
                marked_no_show_ids=no_show_ids,
                marked_completed_ids=completed_ids,
            )
            counts = _status_counts(repo.count_by_status(uow.clinic.id, day))
            uow.events.append(
                DayClosedEvent(
                    **uow.event_fields(),
                    closure_id=closure.id,
                    counts=counts,
                    no_show_entry_refs=tuple(no_show_ids),
                    completed_entry_refs=tuple(completed_ids),
                )
            )
            logger.info(
                "Closed clinic=%s date=%s: %d no-show, %d completed by closure",
                uow.clinic.id,
                day,
                len(no_show_ids),
                len(completed_ids),
            )
            return DayCloseResult(closure=closure, counts=counts)

        return self._execute(caller, clinic_id, day, work)

    @staticmethod
    def _closure_plan(entries: Iterable[QueueEntry]) -> Iterable[tuple[QueueEntry, QueueStatus]]:
        for entry in entries:
            if entry.status in (QueueStatus.WAITING, QueueStatus.ABSENT):
                yield entry, QueueStatus.NO_SHOW
            elif entry.status == QueueStatus.IN_PROGRESS:
                yield entry, QueueStatus.COMPLETED

    def preview_day_closure(
        self,
        caller: Caller,
        clinic_id: str,
        *,
        service_date: date | None = None,
    ) -> DayClosurePreview:
        """Report what ``end_day`` would change without changing anything."""
        day = service_date or self._today()
        with self._session_factory() as session:
            self._authorize(session, clinic_id, caller)
            repo = QueueRepository(session)
            entries = repo.get_queue_by_date(clinic_id, day)
            plan = list(self._closure_plan(entries))
            return DayClosurePreview(
                clinic_id=clinic_id,
                service_date=day,
                already_closed=repo.get_active_closure(clinic_id, day) is not None,
                counts=_status_counts(repo.count_by_status(clinic_id, day)),
                would_mark_no_show=[e.id for e, t in plan if t == QueueStatus.NO_SHOW],
                would_complete=[e.id for e, t in plan if t == QueueStatus.COMPLETED],
            )

    def reopen_day(self, caller: Caller, closure_id: str, reason: str | None) -> DayClosure:
        """Mark a closure reopened so staff can correct entries by hand.

        Entry statuses are left exactly as the closure set them.
        """
        reason_text = _require_reason(reason, "reopen a day")
        with self._session_factory() as session:
            closure = QueueRepository(session).get_closure(closure_id)
            if closure is None:
                raise NotFoundError("day closure", closure_id)
            clinic_id, day = closure.clinic_id, closure.service_date
            self._authorize(session, clinic_id, caller, privileged=True)

        def work(uow: _UnitOfWork) -> DayClosure:
            current = uow.repo.get_closure(closure_id)
            if current is None:
                raise NotFoundError("day closure", closure_id)
            if not current.is_active:
                raise BusinessRuleError(
                    "This closure has already been reopened",
                    rule=RULE_ALREADY_REOPENED,
                    details={"closure_id": closure_id},
                )
            deadline = as_utc(current.closed_at) + timedelta(
                minutes=self._reopen_window_minutes
            )
            if uow.now > deadline:
                raise BusinessRuleError(
                    "The reopen window for this closure has expired",
                    rule=RULE_REOPEN_WINDOW_EXPIRED,
                    details={"closure_id": closure_id, "deadline": deadline.isoformat()},
                )
            current.reopened_at = uow.now
            current.reopened_by = uow.caller.user_id
            current.reopen_reason = reason_text
            uow.repo.session.flush()
            uow.events.append(
                DayReopenedEvent(
                    **uow.event_fields(),
                    closure_id=current.id,
                    reason=reason_text,
                )
            )
            logger.info("Reopened closure %s for clinic=%s date=%s", closure_id, clinic_id, day)
            return current

        return self._execute(caller, clinic_id, day, work, privileged=True)

    # Reads

    def authorize(self, caller: Caller, clinic_id: str, *, privileged: bool = False) -> None:
        """Raise unless ``caller`` may read or act on ``clinic_id``."""
        with self._session_factory() as session:
            self._authorize(session, clinic_id, caller, privileged=privileged)

    def get_queue(
        self,
        caller: Caller,
        clinic_id: str,
        *,
        service_date: date | None = None,
        statuses: Iterable[QueueStatus | str] | None = None,
    ) -> list[QueueEntry]:
        """Return the clinic-day's entries ordered by position."""
        day = service_date or self._today()
        wanted = None
        if statuses is not None:
            try:
                wanted = [QueueStatus(status) for status in statuses]
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
        with self._session_factory() as session:
            self._authorize(session, clinic_id, caller)
            return QueueRepository(session).get_queue_by_date(clinic_id, day, wanted)

    def get_entry(self, caller: Caller, clinic_id: str, entry_id: str) -> QueueEntry:
        with self._session_factory() as session:
            self._authorize(session, clinic_id, caller)
            entry = QueueRepository(session).get_entry(entry_id)
            if entry is None or entry.clinic_id != clinic_id:
                raise NotFoundError("queue entry", entry_id)
            return entry

    def get_queue_summary(
        self,
        caller: Caller,
        clinic_id: str,
        *,
        service_date: date | None = None,
    ) -> QueueSummary:
        day = service_date or self._today()
        with self._session_factory() as session:
            self._authorize(session, clinic_id, caller)
            repo = QueueRepository(session)
            entries = repo.get_queue_by_date(clinic_id, day)
            counts = {status.value: 0 for status in QueueStatus}
            waits: list[float] = []
            in_progress_id = None
            for entry in entries:
                counts[entry.status.value] += 1
                if entry.status == QueueStatus.IN_PROGRESS:
                    in_progress_id = entry.id
                if entry.status == QueueStatus.COMPLETED and entry.called_at is not None:
                    waited = as_utc(entry.called_at) - as_utc(entry.checked_in_at)
                    waits.append(waited.total_seconds() / 60)
            return QueueSummary(
                clinic_id=clinic_id,
                service_date=day,
                counts=counts,
                queue_length=counts[QueueStatus.WAITING.value],
                open_absences=len(repo.list_open_absences(clinic_id, day)),
                in_progress_entry_id=in_progress_id,
                average_wait_minutes=round(sum(waits) / len(waits), 1) if waits else None,
                day_closed=repo.get_active_closure(clinic_id, day) is not None,
            )


__all__ = [
    "Caller",
    "DayCloseResult",
    "DayClosurePreview",
    "PatientRef",
    "QueueService",
    "QueueSummary",
]
