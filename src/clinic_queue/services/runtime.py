"""Composition root wiring the event bus, queue service and subscribers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from clinic_queue.core.settings import Settings, settings
from clinic_queue.db.time import utcnow
from clinic_queue.events import EventBus
from clinic_queue.services.audit import AuditRecorder
from clinic_queue.services.history import PatientHistoryRecorder
from clinic_queue.services.live_feed import LiveFeed
from clinic_queue.services.locks import ClinicDayLocks
from clinic_queue.services.notifications import NotificationDispatcher
from clinic_queue.services.queue_service import QueueService
from clinic_queue.services.sms import SmsTransport, build_sms_transport

logger = logging.getLogger(__name__)


@dataclass
class QueueRuntime:
    """Everything built at startup and torn down at shutdown."""

    bus: EventBus
    queue_service: QueueService
    audit: AuditRecorder
    history: PatientHistoryRecorder
    notifications: NotificationDispatcher
    live_feed: LiveFeed
    transport: SmsTransport

    def shutdown(self, timeout: float = 5.0) -> None:
        if not self.bus.wait_idle(timeout=timeout):
            logger.warning("Event bus still busy after %.1fs; shutting down anyway", timeout)
        self.bus.shutdown()
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()


def build_runtime(
    session_factory: sessionmaker[Session],
    *,
    config: Settings = settings,
    transport: SmsTransport | None = None,
    clock: Callable[[], datetime] = utcnow,
    asynchronous: bool | None = None,
) -> QueueRuntime:
    """Construct one bus and attach every subscriber to it.

    Subscribers are registered audit first so the trail is written before
    notifications go out for the same event.
    """
    threaded = config.event_bus_async if asynchronous is None else asynchronous
    if threaded:
        bus = EventBus.threaded(history_size=config.event_history_size, workers=config.event_bus_workers)
    else:
        bus = EventBus(history_size=config.event_history_size)

    sms = transport or build_sms_transport(config)
    audit = AuditRecorder(session_factory)
    history = PatientHistoryRecorder(session_factory)
    notifications = NotificationDispatcher(
        session_factory,
        sms,
        default_monthly_limit=config.default_monthly_sms_limit,
        default_language=config.default_notification_language,
        clock=clock,
    )
    live_feed = LiveFeed()
    for subscriber in (audit, history, notifications, live_feed):
        subscriber.register(bus)

    service = QueueService(
        session_factory,
        bus,
        locks=ClinicDayLocks(config.queue_lock_timeout_seconds),
        clock=clock,
        grace_period_minutes=config.absent_grace_period_minutes,
        reopen_window_minutes=config.day_reopen_window_minutes,
    )
    logger.info("Queue runtime ready (event bus %s)", "threaded" if threaded else "inline")
    return QueueRuntime(
        bus=bus,
        queue_service=service,
        audit=audit,
        history=history,
        notifications=notifications,
        live_feed=live_feed,
        transport=sms,
    )
