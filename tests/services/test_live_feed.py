"""Tests for the live dashboard feed."""

import asyncio
import threading
from datetime import date

import pytest

from clinic_queue.events import EventBus, PatientAddedToQueueEvent
from clinic_queue.services.live_feed import LiveFeed


def _added(clinic_id: str, position: int) -> PatientAddedToQueueEvent:
    return PatientAddedToQueueEvent(
        clinic_id=clinic_id,
        service_date=date(2026, 3, 16),
        performed_by="owner-1",
        entry_ref=f"entry-{position}",
        patient_ref=f"patient-{position}",
        position=position,
        appointment_type="consultation",
    )


@pytest.mark.asyncio
async def test_listener_receives_clinic_events_only() -> None:
    bus = EventBus()
    feed = LiveFeed()
    feed.register(bus)

    async with feed.listen("clinic-1") as listener:
        bus.publish(_added("clinic-2", 1))
        bus.publish(_added("clinic-1", 2))
        payload = await listener.get(timeout=1)

    assert payload["event_type"] == "queue.patient.added"
    assert payload["clinic_id"] == "clinic-1"
    assert payload["position"] == 2
    assert feed.listener_count("clinic-1") == 0


@pytest.mark.asyncio
async def test_events_from_worker_threads_reach_the_loop() -> None:
    feed = LiveFeed()

    async with feed.listen("clinic-1") as listener:
        worker = threading.Thread(target=feed.handle, args=(_added("clinic-1", 5),))
        worker.start()
        worker.join()
        payload = await listener.get(timeout=1)

    assert payload["entry_ref"] == "entry-5"


@pytest.mark.asyncio
async def test_slow_listener_drops_oldest() -> None:
    feed = LiveFeed(max_buffer=2)

    async with feed.listen("clinic-1") as listener:
        for position in range(1, 5):
            feed.handle(_added("clinic-1", position))
        await asyncio.sleep(0)
        first = await listener.get(timeout=1)
        second = await listener.get(timeout=1)

    assert listener.dropped == 2
    assert (first["position"], second["position"]) == (3, 4)


@pytest.mark.asyncio
async def test_get_times_out_with_none() -> None:
    feed = LiveFeed()
    async with feed.listen("clinic-1") as listener:
        assert await listener.get(timeout=0.01) is None


@pytest.mark.asyncio
async def test_several_listeners_share_events() -> None:
    feed = LiveFeed()
    async with feed.listen("clinic-1") as one, feed.listen("clinic-1") as two:
        assert feed.listener_count("clinic-1") == 2
        feed.handle(_added("clinic-1", 1))
        assert (await one.get(timeout=1))["position"] == 1
        assert (await two.get(timeout=1))["position"] == 1
