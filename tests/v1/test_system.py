"""Tests for system and diagnostics endpoints."""

from fastapi import status
from fastapi.testclient import TestClient


def test_system_config(client: TestClient) -> None:
    """Test system configuration endpoint."""
    r = client.get("/api/v1/system/config")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert "app" in data and "queue" in data and "notifications" in data
    assert data["queue"]["absent_grace_period_minutes"] == 10
    assert data["notifications"]["simulation"] is False
    assert "secret_key" not in str(data)


def test_recent_events(client: TestClient, checked_in) -> None:
    """Test the event bus introspection endpoint."""
    entries = checked_in(2)

    r = client.get("/api/v1/system/events", params={"limit": 1})
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["stats"]["published"] == 2
    assert data["stats"]["failed"] == 0
    (event,) = data["events"]
    assert event["event_type"] == "queue.patient.added"
    assert event["entry_ref"] == entries[1].id


def test_system_health(client: TestClient) -> None:
    """Test system health endpoint."""
    r = client.get("/api/v1/system/health")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["status"] == "healthy"
    assert data["components"]["database"] == "healthy"
