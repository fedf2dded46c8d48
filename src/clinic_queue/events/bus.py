"""In-process publish/subscribe broker for queue events.

The bus is constructed explicitly and handed to the queue service and its
subscribers; there is no module-level instance. ``publish`` returns as soon
as delivery has been scheduled. With an executor, handlers run on worker
threads; without one they run inline on the publishing thread, which keeps
tests deterministic. Either way a failing handler is logged and counted and
never reaches the publisher or sibling handlers.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from clinic_queue.events.queue_events import QueueEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[QueueEvent], None]


@dataclass
class EventBusStats:
    """Delivery counters for diagnostics."""

    published: int = 0
    delivered: int = 0
    failed: int = 0


@dataclass(frozen=True)
class _Subscription:
    event_type: str
    handler: EventHandler
    name: str


class EventBus:
    """Routes events to handlers keyed by ``event_type``.

    Handlers for one event run sequentially in registration order. The most
    recent ``history_size`` events are kept for introspection only; the
    buffer is never replayed.
    """

    def __init__(self, *, history_size: int = 100, executor: Executor | None = None) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._history: deque[QueueEvent] = deque(maxlen=history_size)
        self._executor = executor
        self._lock = threading.Lock()
        self._pending: set[Future[None]] = set()
        self.stats = EventBusStats()

    @classmethod
    def threaded(cls, *, history_size: int = 100, workers: int = 1) -> EventBus:
        """Build a bus whose handlers run on a private worker pool.

        A single worker preserves publish order across events.
        """
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="event-bus")
        return cls(history_size=history_size, executor=executor)

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` and return an unsubscribe callable."""
        subscription = _Subscription(
            event_type=event_type,
            handler=handler,
            name=getattr(handler, "__qualname__", repr(handler)),
        )
        with self._lock:
            self._subscriptions.setdefault(event_type, []).append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscriptions.get(event_type, [])
                if subscription in handlers:
                    handlers.remove(subscription)
                if not handlers:
                    self._subscriptions.pop(event_type, None)

        return unsubscribe

    def subscribe_many(self, event_types: tuple[str, ...], handler: EventHandler) -> None:
        for event_type in event_types:
            self.subscribe(event_type, handler)

    def publish(self, event: QueueEvent) -> None:
        """Record ``event`` and schedule delivery to its subscribers."""
        with self._lock:
            self._history.append(event)
            self.stats.published += 1
            subscriptions = list(self._subscriptions.get(event.event_type, ()))

        logger.info(
            "Publishing event %s id=%s to %d subscriber(s)",
            event.event_type,
            event.event_id,
            len(subscriptions),
        )
        if not subscriptions:
            logger.debug("No subscribers for event %s", event.event_type)
            return

        if self._executor is None:
            self._deliver(event, subscriptions)
            return

        try:
            future = self._executor.submit(self._deliver, event, subscriptions)
        except RuntimeError:
            # Executor already shut down; deliver on the caller's thread instead of dropping.
            logger.warning("Event bus executor unavailable; delivering %s inline", event.event_id)
            self._deliver(event, subscriptions)
            return

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, event: QueueEvent, subscriptions: list[_Subscription]) -> None:
        for subscription in subscriptions:
            try:
                subscription.handler(event)
            except Exception:
                with self._lock:
                    self.stats.failed += 1
                logger.exception(
                    "Event handler %s failed for %s id=%s",
                    subscription.name,
                    event.event_type,
                    event.event_id,
                )
                continue
            with self._lock:
                self.stats.delivered += 1
            logger.debug(
                "Event handler %s handled %s id=%s",
                subscription.name,
                event.event_type,
                event.event_id,
            )

    def subscriber_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(event_type, ()))

    def recent(self, limit: int | None = None) -> list[QueueEvent]:
        """Return recent events, oldest first."""
        with self._lock:
            events = list(self._history)
        return events[-limit:] if limit else events

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until scheduled deliveries finish; return False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if isinstance(self._executor, ThreadPoolExecutor):
            self._executor.shutdown(wait=wait_for_pending)
