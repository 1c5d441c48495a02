import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import USER
from fastapi.testclient import TestClient

from app.main import app
from app.models import PendingReminderConfirmation
from app.services.calendar_service import CalendarProviderError
from app.services.message_service import get_orchestrator


def _payload(message="oi", remote_jid=USER, **body):
    payload = {
        "message": message,
        "messageType": "text",
        "metadata": {"remoteJid": remote_jid, "messageId": "msg-1", "timestamp": 1748264400, "pushName": "Ana"},
    }
    payload.update(body)
    return {"body": payload}


@pytest.fixture
def fake_orchestrator():
    orchestrator = Mock()
    orchestrator.handle_inbound = AsyncMock()
    orchestrator.handle_typing = AsyncMock()
    orchestrator.reminders.list_pending = AsyncMock(return_value=[])
    orchestrator.reminders.check_and_send = AsyncMock(return_value={"sent": 0, "items": []})
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield orchestrator
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


class TestWebhook:
    def test_accepts_message(self, client, fake_orchestrator):
        response = client.post("/webhook", json=_payload("quero marcar um ensaio"))

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Accepted", "user_id": USER}
        fake_orchestrator.handle_inbound.assert_awaited_once()
        inbound = fake_orchestrator.handle_inbound.await_args.args[0]
        assert inbound.content == "quero marcar um ensaio"
        assert inbound.message_id == "msg-1"
        assert inbound.push_name == "Ana"
        assert inbound.timestamp == 1748264400.0

    def test_bare_body_is_accepted(self, client, fake_orchestrator):
        response = client.post("/webhook", json=_payload()["body"])
        assert response.json()["message"] == "Accepted"
        fake_orchestrator.handle_inbound.assert_awaited_once()

    def test_group_message_ignored(self, client, fake_orchestrator):
        response = client.post("/webhook", json=_payload(remote_jid="120363025@g.us"))
        assert response.json()["message"] == "Group message ignored"
        fake_orchestrator.handle_inbound.assert_not_awaited()

    def test_empty_message_ignored(self, client, fake_orchestrator):
        response = client.post("/webhook", json=_payload("   "))
        assert response.json()["message"] == "Empty message ignored"
        fake_orchestrator.handle_inbound.assert_not_awaited()

    def test_audio_without_text_is_accepted(self, client, fake_orchestrator):
        payload = _payload("", messageType="ptt", mediaData={"url": "https://media.example/a.ogg", "mimetype": "audio/ogg"})
        response = client.post("/webhook", json=payload)

        assert response.json()["message"] == "Accepted"
        inbound = fake_orchestrator.handle_inbound.await_args.args[0]
        assert inbound.is_audio is True
        assert inbound.media_url == "https://media.example/a.ogg"
        assert inbound.media_mime == "audio/ogg"

    def test_missing_sender(self, client, fake_orchestrator):
        response = client.post("/webhook", json={"body": {"message": "oi"}})
        assert response.json() == {"success": False, "message": "Missing sender", "user_id": None}

    def test_invalid_json(self, client, fake_orchestrator):
        response = client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 200
        assert response.json()["message"] == "Invalid JSON payload"
        assert response.json()["success"] is False

    def test_empty_ping(self, client, fake_orchestrator):
        response = client.post("/webhook", content=b"", headers={"Content-Type": "application/json"})
        assert response.json() == {"success": True, "message": "Empty payload", "user_id": None}

    def test_non_object_payload(self, client, fake_orchestrator):
        response = client.post("/webhook", json=["oi"])
        assert response.json()["message"] == "Invalid payload format"


class TestPresence:
    def test_typing_is_forwarded(self, client, fake_orchestrator):
        response = client.post("/webhook/presence", json={"remoteJid": USER, "state": "composing"})
        assert response.json()["message"] == "Typing recorded"
        fake_orchestrator.handle_typing.assert_awaited_once_with(USER)

    def test_other_states_ignored(self, client, fake_orchestrator):
        response = client.post("/webhook/presence", json={"remoteJid": USER, "state": "available"})
        assert response.json()["message"] == "Ignored"
        fake_orchestrator.handle_typing.assert_not_awaited()


class TestReminderEndpoints:
    def test_pending(self, client, fake_orchestrator):
        fake_orchestrator.reminders.list_pending.return_value = [
            PendingReminderConfirmation(
                user_id=USER, event_id="evt-1", sent_at=0.0, event_date="27/05/2025", event_time="15:00"
            )
        ]
        data = client.get("/reminders/pending").json()
        assert data["count"] == 1
        assert data["reminders"][0]["event_id"] == "evt-1"

    def test_check(self, client, fake_orchestrator):
        fake_orchestrator.reminders.check_and_send.return_value = {
            "sent": 1,
            "items": [{"event_id": "evt-1", "user_id": USER, "hours": 24}],
        }
        data = client.post("/reminders/check").json()
        assert data == {"success": True, "sent": 1, "items": [{"event_id": "evt-1", "user_id": USER, "hours": 24}]}

    def test_check_calendar_failure(self, client, fake_orchestrator):
        fake_orchestrator.reminders.check_and_send.side_effect = CalendarProviderError("down")
        data = client.post("/reminders/check").json()
        assert data == {"success": False, "sent": 0, "items": []}


class TestAdminEndpoints:
    @pytest.fixture(autouse=True)
    def _use_orchestrator(self, orchestrator):
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        yield
        app.dependency_overrides.clear()

    def test_pause_lifecycle(self, client, orchestrator):
        assert client.get("/admin/pause").json()["is_paused"] is False

        asyncio.run(orchestrator.intervention.escalate())
        status = client.get("/admin/pause").json()
        assert status["is_paused"] is True
        assert status["pause_level"] == 1
        assert status["remaining_minutes"] == 10.0

        cleared = client.delete("/admin/pause").json()
        assert cleared == {"is_paused": False, "pause_level": 0, "paused_until": None, "remaining_minutes": 0.0}

    def test_session_snapshot(self, client, orchestrator):
        data = client.get(f"/admin/sessions/{USER}").json()
        assert data["user_id"] == USER
        assert data["conversation"] is None
        assert data["violations"] == []


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
