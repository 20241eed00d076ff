"""
Tests for the browser relay protocol.
"""

import json

import pytest

from src.shopvoice.echo import TranscriptEvent
from src.shopvoice.session_protocol import (
    PageState,
    SessionErrorEvent,
    SessionEventType,
    create_action_message,
    create_connection_message,
    create_say_message,
    create_start_message,
    create_ui_message,
    parse_session_message,
)


class TestMessageParsing:
    """Tests for parsing relay messages."""

    def test_parse_lifecycle_event(self):
        event_type, payload = parse_session_message(json.dumps({"type": "session_started"}))
        assert event_type == SessionEventType.SESSION_STARTED
        assert payload["type"] == "session_started"

    def test_parse_transcript(self):
        message = json.dumps({
            "type": "transcript",
            "text": "show me the cart",
            "is_final": False,
            "session_id": "sess_1",
            "timestamp": 12.5,
        })

        event_type, event = parse_session_message(message)

        assert event_type == SessionEventType.TRANSCRIPT
        assert isinstance(event, TranscriptEvent)
        assert event.text == "show me the cart"
        assert event.is_final is False
        assert event.session_id == "sess_1"
        assert event.timestamp == 12.5

    def test_transcript_defaults_to_final(self):
        _, event = parse_session_message(json.dumps({"type": "transcript", "text": "hi"}))
        assert event.is_final is True

    def test_parse_error(self):
        _, event = parse_session_message(json.dumps({"type": "error", "kind": "auth", "message": "401"}))
        assert isinstance(event, SessionErrorEvent)
        assert event.kind == "auth"
        assert event.message == "401"

    def test_parse_page_state(self):
        message = json.dumps({
            "type": "page_state",
            "path": "/product/p1",
            "product": {"id": "p1", "name": "Aero Running Shoes", "sizes": ["S", "M"]},
            "products": [{"id": "p1", "name": "Aero Running Shoes"}, {"name": "missing id"}],
            "cart": [{"id": "c1", "name": "Hoodie", "quantity": "2", "size": "L"}],
            "filter_options": {"color": ["Black"], "bad": "not-a-list"},
            "locale": "ar-SA",
        })

        event_type, state = parse_session_message(message)

        assert event_type == SessionEventType.PAGE_STATE
        assert isinstance(state, PageState)
        assert state.path == "/product/p1"
        assert state.product.sizes == ["S", "M"]
        assert [p.id for p in state.products] == ["p1"]
        assert state.cart[0].quantity == 2
        assert state.filter_options == {"color": ["Black"]}
        assert state.locale == "ar"

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            parse_session_message("not json")

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            parse_session_message(json.dumps({"type": "media"}))

    def test_non_object(self):
        with pytest.raises(ValueError):
            parse_session_message("[1, 2]")


class TestMessageCreation:
    """Tests for outbound relay messages."""

    def test_start_and_say(self):
        assert json.loads(create_start_message("asst_1")) == {"type": "start", "session_id": "asst_1"}
        assert json.loads(create_say_message("Hello")) == {"type": "say", "text": "Hello"}

    def test_ui_message(self):
        data = json.loads(create_ui_message("navigate", path="/cart"))
        assert data == {"type": "ui", "command": "navigate", "args": {"path": "/cart"}}

    def test_action_and_connection(self):
        data = json.loads(create_action_message({"description": "Opened cart", "success": True, "timestamp": 1.0}))
        assert data["type"] == "action"
        assert data["description"] == "Opened cart"
        assert json.loads(create_connection_message("active")) == {"type": "connection", "state": "active"}
