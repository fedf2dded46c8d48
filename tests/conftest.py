# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Generator, Iterator
from datetime import UTC, date, datetime, timedelta
from itertools import count
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from clinic_queue.core.errors import NotificationTransportError
from clinic_queue.core.security import create_access_token
from clinic_queue.db.session import Base
from clinic_queue.db.session import get_db as app_get_session
from clinic_queue.main import app as fastapi_app
from clinic_queue.models import (
    Clinic,
    ClinicStaff,
    GuestPatient,
    NotificationBudget,
    Patient,
    QueueEntry,
)
from clinic_queue.models.clinic import STAFF_ROLE_MANAGER, STAFF_ROLE_RECEPTIONIST
from clinic_queue.services import Caller, PatientRef, QueueRuntime, QueueService, build_runtime
from clinic_queue.services.sms import SmsResult

SERVICE_DATE = date(2026, 3, 16)
OPENING_TIME = datetime(2026, 3, 16, 8, 30, tzinfo=UTC)

_PHONE_COUNTER = count(1)


class FakeClock:
    """Controllable stand-in for ``utcnow``."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingSmsTransport:
    """Transport double that records messages and can be told to fail."""

    simulated = False

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with: str | None = None

    def send(self, to: str, body: str) -> SmsResult:
        if self.fail_with is not None:
            raise NotificationTransportError(self.fail_with)
        self.sent.append((to, body))
        return SmsResult(simulated=False, provider_id=f"SM{len(self.sent):04d}")

    def bodies_to(self, phone: str) -> list[str]:
        return [body for to, body in self.sent if to == phone]


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    # File-backed so every session gets its own connection, as in production.
    engine = create_engine(
        f"sqlite:///{tmp_path / 'queue.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(OPENING_TIME)


@pytest.fixture()
def sms_transport() -> RecordingSmsTransport:
    return RecordingSmsTransport()


@pytest.fixture()
def runtime(
    session_factory: sessionmaker[Session],
    clock: FakeClock,
    sms_transport: RecordingSmsTransport,
) -> Iterator[QueueRuntime]:
    """Runtime with an inline bus so subscribers finish before the call returns."""
    runtime = build_runtime(
        session_factory,
        transport=sms_transport,
        clock=clock,
        asynchronous=False,
    )
    try:
        yield runtime
    finally:
        runtime.shutdown()


@pytest.fixture()
def queue_service(runtime: QueueRuntime) -> QueueService:
    return runtime.queue_service


@pytest.fixture()
def clinic(db_session: Session) -> Clinic:
    clinic = Clinic(
        name="Cabinet Atlas",
        owner_user_id="owner-1",
        preferred_language="en",
    )
    db_session.add(clinic)
    db_session.commit()
    return clinic


@pytest.fixture()
def owner(clinic: Clinic) -> Caller:
    return Caller(user_id=clinic.owner_user_id)


def _add_staff(db_session: Session, clinic: Clinic, user_id: str, role: str, active: bool = True) -> Caller:
    db_session.add(ClinicStaff(clinic_id=clinic.id, user_id=user_id, role=role, is_active=active))
    db_session.commit()
    return Caller(user_id=user_id)


@pytest.fixture()
def receptionist(db_session: Session, clinic: Clinic) -> Caller:
    return _add_staff(db_session, clinic, "reception-1", STAFF_ROLE_RECEPTIONIST)


@pytest.fixture()
def manager(db_session: Session, clinic: Clinic) -> Caller:
    return _add_staff(db_session, clinic, "manager-1", STAFF_ROLE_MANAGER)


@pytest.fixture()
def inactive_staff(db_session: Session, clinic: Clinic) -> Caller:
    return _add_staff(db_session, clinic, "former-1", STAFF_ROLE_RECEPTIONIST, active=False)


@pytest.fixture()
def make_patient(db_session: Session) -> Callable[..., Patient]:
    def _make(full_name: str = "Patient", phone_number: str | None = "auto") -> Patient:
        if phone_number == "auto":
            phone_number = f"+21260000{next(_PHONE_COUNTER):04d}"
        patient = Patient(full_name=full_name, phone_number=phone_number)
        db_session.add(patient)
        db_session.commit()
        return patient

    return _make


@pytest.fixture()
def make_guest(db_session: Session, clinic: Clinic) -> Callable[..., GuestPatient]:
    def _make(full_name: str = "Walk-in", phone_number: str | None = None) -> GuestPatient:
        guest = GuestPatient(clinic_id=clinic.id, full_name=full_name, phone_number=phone_number)
        db_session.add(guest)
        db_session.commit()
        return guest

    return _make


@pytest.fixture()
def checked_in(
    queue_service: QueueService,
    owner: Caller,
    clinic: Clinic,
    make_patient: Callable[..., Patient],
) -> Callable[[int], list[QueueEntry]]:
    """Check ``n`` fresh registered patients into today's queue."""

    def _check_in(n: int) -> list[QueueEntry]:
        entries = []
        for index in range(n):
            patient = make_patient(full_name=f"Patient {index + 1}")
            entries.append(
                queue_service.add_to_queue(owner, clinic.id, PatientRef.registered(patient.id))
            )
        return entries

    return _check_in


@pytest.fixture()
def fetch_entry(session_factory: sessionmaker[Session]) -> Callable[[str], QueueEntry]:
    """Reload an entry from the database in a fresh session."""

    def _fetch(entry_id: str) -> QueueEntry:
        with session_factory() as session:
            entry = session.get(QueueEntry, entry_id)
            assert entry is not None
            return entry

    return _fetch


@pytest.fixture()
def set_budget(db_session: Session, clinic: Clinic) -> Callable[..., NotificationBudget]:
    def _set(monthly_limit: int, sent_count: int = 0, enabled: bool = True) -> NotificationBudget:
        budget = NotificationBudget(
            clinic_id=clinic.id,
            monthly_limit=monthly_limit,
            sent_count=sent_count,
            period_start=SERVICE_DATE.replace(day=1),
            notifications_enabled=enabled,
        )
        db_session.merge(budget)
        db_session.commit()
        return budget

    return _set


@pytest.fixture()
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    runtime: QueueRuntime,
    session_factory: sessionmaker[Session],
) -> Iterator[TestClient]:
    def _get_session_override() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[app_get_session] = _get_session_override
    app.state.runtime = runtime
    app.state.owns_runtime = False
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.state.runtime = None


def _bearer(caller: Caller) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(caller.user_id)}"}


@pytest.fixture()
def headers_for() -> Callable[[Caller], dict[str, str]]:
    return _bearer


@pytest.fixture()
def auth_headers(owner: Caller) -> dict[str, str]:
    return _bearer(owner)
