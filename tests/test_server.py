"""
Tests for the FastAPI server endpoints.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from server.app import app, metrics


def _receive_until(ws, message_type: str, limit: int = 20):
    seen = []
    for _ in range(limit):
        message = ws.receive_json()
        seen.append(message)
        if message["type"] == message_type:
            return message, seen
    raise AssertionError(f"No {message_type!r} message in {seen}")


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def fake_oracle():
    oracle = MagicMock()
    oracle.complete = AsyncMock(return_value="general_command")
    with patch("src.shopvoice.engine.get_oracle", return_value=oracle):
        yield oracle


class TestHttpEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, client):
        data = client.get("/metrics").json()
        assert "active_sessions" in data
        assert "uptime_seconds" in data


class TestRelayWebSocket:
    def test_checkout_command_drives_ui_and_speech(self, client, fake_oracle):
        with client.websocket_connect("/ws") as ws:
            start, _ = _receive_until(ws, "start")
            assert start["session_id"] == "asst_test"

            ws.send_json({"type": "session_started"})
            connection, _ = _receive_until(ws, "connection")
            assert connection["state"] == "active"

            ws.send_json({
                "type": "page_state",
                "path": "/cart",
                "cart": [{"id": "c1", "name": "Flow Yoga Mat", "quantity": 1, "size": "One Size"}],
            })
            ws.send_json({"type": "transcript", "text": "checkout please", "is_final": True})

            say, seen = _receive_until(ws, "say")
            assert say["text"] == "Let's complete your order. What is your full name?"
            assert {"type": "ui", "command": "navigate", "args": {"path": "/payment"}} in seen

        fake_oracle.complete.assert_not_awaited()

    def test_invalid_message_counted_and_ignored(self, client, fake_oracle):
        before = metrics.invalid_messages
        with client.websocket_connect("/ws") as ws:
            _receive_until(ws, "start")
            ws.send_text("not json")
            ws.send_json({"type": "session_started"})
            connection, _ = _receive_until(ws, "connection")
            assert connection["state"] == "active"

        assert metrics.invalid_messages == before + 1
