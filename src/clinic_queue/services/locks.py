"""Per clinic-day mutual exclusion inside one process."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date

from clinic_queue.core.errors import ConcurrencyError

logger = logging.getLogger(__name__)


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ClinicDayLocks:
    """Registry of locks keyed by ``(clinic_id, service_date)``.

    Mutations on different clinic-days never contend. A slot lives only while
    some thread holds or waits for it, so the registry does not grow with the
    number of days served. On PostgreSQL the repository additionally takes a
    transaction-scoped advisory lock so that several application processes
    serialize as well.
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._registry_lock = threading.Lock()
        self._slots: dict[tuple[str, date], _Slot] = {}

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._slots)

    def is_held(self, clinic_id: str, service_date: date) -> bool:
        with self._registry_lock:
            slot = self._slots.get((clinic_id, service_date))
            return slot is not None and slot.lock.locked()

    def _checkout(self, key: tuple[str, date]) -> _Slot:
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
            return slot

    def _checkin(self, key: tuple[str, date], slot: _Slot) -> None:
        with self._registry_lock:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    @contextmanager
    def hold(self, clinic_id: str, service_date: date) -> Iterator[None]:
        """Hold the clinic-day lock, raising ConcurrencyError on timeout."""
        key = (clinic_id, service_date)
        slot = self._checkout(key)
        try:
            if not slot.lock.acquire(timeout=self.timeout_seconds):
                logger.warning(
                    "Timed out waiting for queue lock clinic=%s date=%s",
                    clinic_id,
                    service_date,
                )
                raise ConcurrencyError(
                    "The queue is busy; retry the action",
                    details={"clinic_id": clinic_id, "service_date": service_date.isoformat()},
                )
            try:
                yield
            finally:
                slot.lock.release()
        finally:
            self._checkin(key, slot)
