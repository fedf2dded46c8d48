"""Patient notifications driven by queue events.

Each qualifying event is planned into zero or more messages. Every message
then goes through the same steps:

1. check the clinic's switch,
2. resolve the recipient,
3. reserve one unit of the monthly budget,
4. hand the message to the transport.

Each message leaves a ``NotificationRecord`` with its outcome. Nothing in
here raises into the event bus for an expected failure.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clinic_queue.core.errors import NotificationTransportError
from clinic_queue.core.settings import settings
from clinic_queue.db.time import month_start, utcnow
from clinic_queue.events import (
    EventBus,
    PatientCalledEvent,
    PatientMarkedAbsentEvent,
    PatientReturnedEvent,
    QueueEvent,
    QueuePositionChangedEvent,
)
from clinic_queue.models import Clinic, NotificationBudget, QueueEntry
from clinic_queue.models.notification import (
    OUTCOME_BUDGET_EXCEEDED,
    OUTCOME_DISABLED,
    OUTCOME_FAILED,
    OUTCOME_NO_RECIPIENT,
    OUTCOME_SENT,
    OUTCOME_SIMULATED,
)
from clinic_queue.repositories import ClinicRepository, NotificationRepository
from clinic_queue.services.sms import SmsTransport

logger = logging.getLogger(__name__)

TEMPLATE_YOUR_TURN = "your_turn"
TEMPLATE_ALMOST_YOUR_TURN = "almost_your_turn"
TEMPLATE_STILL_NEXT = "still_next_reassurance"
TEMPLATE_MARKED_ABSENT = "patient_marked_absent"
TEMPLATE_REQUEUED = "late_arrival_requeued"
TEMPLATE_POSITION_UPDATE = "position_update"

DEFAULT_TEMPLATES: dict[str, dict[str, str]] = {
    TEMPLATE_YOUR_TURN: {
        "en": "It's your turn! Please proceed to the consultation room at {clinic_name}.",
        "fr": "C'est votre tour! Veuillez vous rendre en salle de consultation à {clinic_name}.",
        "ar": "حان دورك! يرجى التوجه إلى غرفة الاستشارة في {clinic_name}.",
    },
    TEMPLATE_ALMOST_YOUR_TURN: {
        "en": "Heads up: you are next! Please make your way to {clinic_name}.",
        "fr": "Attention: vous êtes le prochain! Veuillez vous rendre à {clinic_name}.",
        "ar": "تنبيه: أنت التالي! يرجى التوجه إلى {clinic_name}.",
    },
    TEMPLATE_STILL_NEXT: {
        "en": "Hi {patient_name}, a present patient was called. You are still next at position {position}.",
        "fr": "Bonjour {patient_name}, un patient présent a été pris. Vous êtes toujours le suivant (position {position}).",
        "ar": "مرحباً {patient_name}، تم استدعاء مريض حاضر. أنت ما زلت التالي في الدور {position}.",
    },
    TEMPLATE_MARKED_ABSENT: {
        "en": "Hi {patient_name}, you missed your turn at {clinic_name}. Please see reception within {grace_minutes} minutes.",
        "fr": "Bonjour {patient_name}, vous avez manqué votre tour à {clinic_name}. Veuillez voir la réception dans les {grace_minutes} minutes.",
        "ar": "مرحباً {patient_name}، لقد فاتك دورك في {clinic_name}. يرجى التواصل مع الاستقبال خلال {grace_minutes} دقيقة.",
    },
    TEMPLATE_REQUEUED: {
        "en": "Your arrival at {clinic_name} is registered. New queue position: {position}",
        "fr": "Votre arrivée à {clinic_name} est enregistrée. Nouvelle position: {position}",
        "ar": "تم تسجيل وصولك إلى {clinic_name}. موقعك الجديد في الطابور: {position}",
    },
    TEMPLATE_POSITION_UPDATE: {
        "en": "Update: You are now #{position} at {clinic_name}.",
        "fr": "Mise à jour: Vous êtes maintenant n°{position} à {clinic_name}.",
        "ar": "تحديث: أنت الآن رقم {position} في الطابور في {clinic_name}.",
    },
}

FALLBACK_LANGUAGE = "en"


class _TemplateValues(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return ""


@dataclass(frozen=True)
class PlannedMessage:
    """A template to send to one queue entry's patient."""

    entry_id: str
    template_key: str
    variables: dict[str, Any] = field(default_factory=dict)


def plan_messages(event: QueueEvent) -> list[PlannedMessage]:
    """Map a queue event to the messages it should trigger."""
    if isinstance(event, PatientCalledEvent):
        planned = [PlannedMessage(event.entry_ref, TEMPLATE_YOUR_TURN)]
        skipped = set(event.skipped_entry_refs)
        if event.next_entry_ref is not None and event.next_entry_ref not in skipped:
            planned.append(PlannedMessage(event.next_entry_ref, TEMPLATE_ALMOST_YOUR_TURN))
        planned.extend(
            PlannedMessage(entry_id, TEMPLATE_STILL_NEXT) for entry_id in event.skipped_entry_refs
        )
        return planned
    if isinstance(event, PatientMarkedAbsentEvent):
        grace = max(int((event.grace_deadline - event.occurred_at).total_seconds() // 60), 0)
        return [
            PlannedMessage(event.entry_ref, TEMPLATE_MARKED_ABSENT, {"grace_minutes": grace})
        ]
    if isinstance(event, PatientReturnedEvent):
        return [
            PlannedMessage(event.entry_ref, TEMPLATE_REQUEUED, {"position": event.new_position})
        ]
    if isinstance(event, QueuePositionChangedEvent):
        return [
            PlannedMessage(
                event.entry_ref,
                TEMPLATE_POSITION_UPDATE,
                {"position": event.new_position},
            )
        ]
    return []


def render_template(body: str, values: dict[str, Any]) -> str:
    return body.format_map(_TemplateValues(values))


class NotificationDispatcher:
    """Sends patient messages for queue events within each clinic's monthly budget."""

    event_types: tuple[str, ...] = (
        PatientCalledEvent.event_type,
        PatientMarkedAbsentEvent.event_type,
        PatientReturnedEvent.event_type,
        QueuePositionChangedEvent.event_type,
    )

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        transport: SmsTransport,
        *,
        default_monthly_limit: int | None = None,
        default_language: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._transport = transport
        self._default_limit = (
            settings.default_monthly_sms_limit
            if default_monthly_limit is None
            else default_monthly_limit
        )
        self._default_language = default_language or settings.default_notification_language
        self._clock = clock

    def register(self, bus: EventBus) -> None:
        bus.subscribe_many(self.event_types, self.handle)

    def handle(self, event: QueueEvent) -> None:
        self.dispatch(event)

    def current_budget(self, clinic_id: str) -> NotificationBudget:
        """Return the clinic's budget for the current period, creating it if needed."""
        with self._session_factory() as session:
            budget = NotificationRepository(session).get_or_create_budget(
                clinic_id,
                period_start=month_start(self._clock().date()),
                default_limit=self._default_limit,
            )
            session.commit()
            return budget

    def dispatch(self, event: QueueEvent) -> list[str]:
        """Send every message ``event`` calls for and return their outcomes."""
        outcomes: list[str] = []
        for message in plan_messages(event):
            try:
                outcomes.append(self._send_one(event, message))
            except Exception as exc:
                logger.exception(
                    "Notification failed for %s entry=%s template=%s",
                    event.event_type,
                    message.entry_id,
                    message.template_key,
                )
                self._record_failure(event, message, exc)
                outcomes.append(OUTCOME_FAILED)
        return outcomes

    def _record_failure(self, event: QueueEvent, message: PlannedMessage, exc: Exception) -> None:
        try:
            with self._session_factory() as session:
                NotificationRepository(session).add_record(
                    clinic_id=event.clinic_id,
                    entry_id=message.entry_id,
                    event_id=event.event_id,
                    template_key=message.template_key,
                    outcome=OUTCOME_FAILED,
                    failure_reason=str(exc) or type(exc).__name__,
                )
                session.commit()
        except SQLAlchemyError:
            logger.exception("Could not record failed notification for entry %s", message.entry_id)

    def _send_one(self, event: QueueEvent, message: PlannedMessage) -> str:
        with self._session_factory() as session:
            clinics = ClinicRepository(session)
            notifications = NotificationRepository(session)
            clinic = clinics.get_clinic(event.clinic_id)
            entry = session.get(QueueEntry, message.entry_id)
            if clinic is None or entry is None:
                logger.warning(
                    "Skipping %s: clinic %s or entry %s no longer exists",
                    message.template_key,
                    event.clinic_id,
                    message.entry_id,
                )
                return OUTCOME_NO_RECIPIENT

            def record(outcome: str, **fields: Any) -> str:
                notifications.add_record(
                    clinic_id=clinic.id,
                    entry_id=entry.id,
                    event_id=event.event_id,
                    template_key=message.template_key,
                    outcome=outcome,
                    **fields,
                )
                session.commit()
                return outcome

            budget = notifications.get_or_create_budget(
                clinic.id,
                period_start=month_start(self._clock().date()),
                default_limit=self._default_limit,
            )
            if not budget.notifications_enabled:
                logger.info("Notifications disabled for clinic %s; %s not sent", clinic.id, message.template_key)
                return record(OUTCOME_DISABLED)

            contact = clinics.get_contact(entry)
            if contact is None or not contact.phone_number:
                logger.info("No phone number for entry %s; %s not sent", entry.id, message.template_key)
                return record(OUTCOME_NO_RECIPIENT)

            body = self._render(notifications, clinic, message, entry, contact.full_name)

            if not notifications.try_consume(clinic.id):
                logger.warning(
                    "Monthly SMS budget exhausted for clinic %s; %s to entry %s skipped",
                    clinic.id,
                    message.template_key,
                    entry.id,
                )
                return record(OUTCOME_BUDGET_EXCEEDED, recipient=contact.phone_number, message=body)
            # Reservation is committed before sending.
            session.commit()

            try:
                result = self._transport.send(contact.phone_number, body)
            except Exception as exc:
                notifications.release(clinic.id)
                logger.error(
                    "SMS transport failed for entry %s template %s: %s",
                    entry.id,
                    message.template_key,
                    exc,
                    exc_info=not isinstance(exc, NotificationTransportError),
                )
                return record(
                    OUTCOME_FAILED,
                    recipient=contact.phone_number,
                    message=body,
                    failure_reason=str(exc),
                )

            outcome = OUTCOME_SIMULATED if result.simulated else OUTCOME_SENT
            logger.info("Notification %s for entry %s: %s", message.template_key, entry.id, outcome)
            return record(outcome, recipient=contact.phone_number, message=body)

    def _render(
        self,
        notifications: NotificationRepository,
        clinic: Clinic,
        message: PlannedMessage,
        entry: QueueEntry,
        patient_name: str,
    ) -> str:
        language = clinic.preferred_language or self._default_language
        defaults = DEFAULT_TEMPLATES[message.template_key]
        default_body = defaults.get(language) or defaults[FALLBACK_LANGUAGE]
        values = {
            "patient_name": patient_name,
            "clinic_name": clinic.name,
            "position": entry.position,
            **message.variables,
        }
        custom = notifications.get_template(clinic.id, message.template_key, language)
        if custom is not None:
            try:
                return render_template(custom, values)
            except (ValueError, IndexError, KeyError, AttributeError, TypeError) as exc:
                logger.warning(
                    "Clinic template %s/%s for clinic %s is malformed (%s); using default",
                    message.template_key,
                    language,
                    clinic.id,
                    exc,
                )
        return render_template(default_body, values)
