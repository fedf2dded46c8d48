"""Fan-out of queue events to live dashboard listeners.

Bus handlers may run on worker threads while listeners consume on the
event loop, so payloads cross over with ``call_soon_threadsafe``. Each
listener has a bounded buffer; when a slow consumer falls behind, the
oldest payload is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from clinic_queue.events import EVENT_CLASSES, EventBus, QueueEvent

logger = logging.getLogger(__name__)


class FeedListener:
    """One consumer's buffered view of a clinic's events."""

    def __init__(self, clinic_id: str, loop: asyncio.AbstractEventLoop, max_buffer: int) -> None:
        self.clinic_id = clinic_id
        self.dropped = 0
        self._loop = loop
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_buffer)

    def push(self, payload: dict[str, Any]) -> None:
        self._loop.call_soon_threadsafe(self._offer, payload)

    def _offer(self, payload: dict[str, Any]) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(payload)

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Return the next payload, or None when ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None


class LiveFeed:
    def __init__(self, max_buffer: int = 100) -> None:
        self._max_buffer = max_buffer
        self._lock = threading.Lock()
        self._listeners: dict[str, list[FeedListener]] = {}

    def register(self, bus: EventBus) -> None:
        bus.subscribe_many(tuple(EVENT_CLASSES), self.handle)

    def handle(self, event: QueueEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event.clinic_id, ()))
        if not listeners:
            return
        payload = event.to_dict()
        for listener in listeners:
            try:
                listener.push(payload)
            except RuntimeError:
                # Listener's event loop is gone.
                logger.debug("Dropping live feed listener for clinic %s", listener.clinic_id)
                self._remove(listener)

    def listener_count(self, clinic_id: str) -> int:
        with self._lock:
            return len(self._listeners.get(clinic_id, ()))

    @asynccontextmanager
    async def listen(self, clinic_id: str) -> AsyncIterator[FeedListener]:
        """Attach a listener for ``clinic_id`` for the duration of the block."""
        listener = FeedListener(clinic_id, asyncio.get_running_loop(), self._max_buffer)
        with self._lock:
            self._listeners.setdefault(clinic_id, []).append(listener)
        logger.debug("Live feed listener attached for clinic %s", clinic_id)
        try:
            yield listener
        finally:
            self._remove(listener)

    def _remove(self, listener: FeedListener) -> None:
        with self._lock:
            listeners = self._listeners.get(listener.clinic_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(listener.clinic_id, None)
