"""Tests for the FastAPI facade."""

import pytest
from fastapi.testclient import TestClient

from api_server import create_app
from exceptions import StorageError


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "healthy"
    health = client.get("/health").json()
    assert health["push_ready"] is False
    assert health["storage"] == "sqlite"
    assert health["backend"] == "up"


def test_device_initialize_then_schedule_and_cancel(client, backend):
    assert client.post("/device/initialize").json() == {"push_ready": True, "permission_denied": False}

    created = client.post("/reminders", json={"text": "walk dog", "time": "15 minutes", "confidence": 0.9})
    assert created.status_code == 201
    reminder = created.json()["reminder"]
    assert created.json()["method"] == "push"
    assert reminder["remoteId"] == "remote-1"

    listed = client.get("/reminders").json()
    assert [r["id"] for r in listed] == [reminder["id"]]

    status = client.get(f"/reminders/{reminder['id']}/status")
    assert status.json()["status"] == "scheduled"

    canceled = client.delete(f"/reminders/{reminder['id']}")
    assert canceled.json()["canceled_remote"] is True
    assert client.get("/reminders").json() == []
    assert client.delete(f"/reminders/{reminder['id']}").status_code == 404


def test_invalid_time_is_a_400(client):
    response = client.post("/reminders", json={"text": "x", "time": "eventually"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid time format received"


def test_permission_report_blocks_push(client):
    client.post("/device/permissions", json={"os_granted": False, "push_granted": True, "reason": "off"})
    assert client.post("/device/initialize").json() == {"push_ready": False, "permission_denied": True}

    created = client.post("/reminders", json={"text": "walk dog", "time": "15 minutes"})
    assert created.json()["method"] == "local_only"
    assert created.json()["warning"] is True


def test_token_refresh_endpoint(client, backend):
    client.post("/device/initialize")
    assert client.post("/device/token", json={"token": "token-B"}).json() == {"registered": True}
    assert backend.bodies("/firebase/register-device")[-1]["fcmToken"] == "token-B"
    assert client.get("/debug").json()["fcmToken"] == "token-B..."


def test_message_endpoint_routes_to_chat(client, backend):
    reply = client.post("/messages", json={"text": "tell me a joke"}).json()
    assert reply["route"] == "chat"
    assert reply["text"] == "Hello there!"
    history = client.get("/history").json()
    assert [m["role"] for m in history] == ["user", "assistant"]


def test_message_endpoint_chat_failure_is_a_502(client, backend):
    backend.fail_paths["/api/chat/"] = "network"
    response = client.post("/messages", json={"text": "hello"})
    assert response.status_code == 502
    assert response.json()["status"] == 0


def test_clear_history(client, backend):
    client.post("/messages", json={"text": "hello"})
    assert client.delete("/history").json() == {"cleared": True, "remote_cleared": True}
    assert client.get("/history").json() == []
    assert backend.requests[-1][:2] == ("DELETE", "/api/chat/history/user-42")


def test_settings_round_trip(client, services):
    assert client.get("/settings").json() == {"web_search_enabled": True, "auto_play_audio": False}
    updated = client.put("/settings", json={"auto_play_audio": True}).json()
    assert updated == {"web_search_enabled": True, "auto_play_audio": True}
    assert services.storage.get_auto_play_audio() is True


def test_stats_endpoint(client):
    client.post("/reminders", json={"text": "a", "time": "5 minutes"})
    client.post("/reminders", json={"text": "b", "time": "6 minutes"})
    stats = client.get("/reminders/stats").json()
    assert stats["total"] == 2
    assert stats["local_only"] == 2


def test_storage_failure_is_a_500(client, services, monkeypatch):
    def broken(key):
        raise StorageError("Failed to read 'local_reminders'")

    monkeypatch.setattr(services.storage, "get", broken)
    response = client.get("/reminders")
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to read 'local_reminders'"


def test_test_notification_endpoint(client):
    assert client.post("/device/test-notification").status_code == 409
    client.post("/device/initialize")
    assert client.post("/device/test-notification").json() == {"scheduled": True, "remote_id": "remote-1"}
