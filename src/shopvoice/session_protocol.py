"""
Browser relay WebSocket protocol.

The browser owns the microphone, the speech provider SDK and the storefront
pages. It relays session events and page state to us as JSON text frames with
a "type" field:

- session_started / session_ended: provider session lifecycle
- speech_started / speech_ended: the assistant's own speech playback
- error: {kind, message}
- transcript: {text, is_final, session_id?, timestamp?}
- page_state: {path, product?, products?, cart?, selected_size?, quantity?,
  filter_options?, locale?}

Outbound messages:
- start {session_id} / stop: drive the provider session
- say {text}: speak a system utterance
- ui {command, args}: storefront commands (navigate, back, cart, filters, ...)
- profile {fields}: profile fields that changed
- action {description, success, timestamp}: action log entry
- connection {state}: session connectivity for the UI
"""

from dataclasses import dataclass, field
from enum import Enum
import time
from typing import Any, Dict, List, Optional

import msgspec
import structlog

from src.shopvoice.echo import TranscriptEvent
from src.shopvoice.language import normalize_locale
from src.shopvoice.storefront import CartItem, Product

logger = structlog.get_logger(__name__)

# Create global msgspec encoder/decoder
decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()


class SessionEventType(str, Enum):
    """Inbound relay message types."""
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    SPEECH_STARTED = "speech_started"
    SPEECH_ENDED = "speech_ended"
    ERROR = "error"
    TRANSCRIPT = "transcript"
    PAGE_STATE = "page_state"


@dataclass
class SessionErrorEvent:
    """Parsed error event."""
    kind: str
    message: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "SessionErrorEvent":
        return cls(
            kind=str(message.get("kind") or "unknown"),
            message=str(message.get("message") or ""),
        )


def _parse_product(data: Any) -> Optional[Product]:
    if not isinstance(data, dict) or not data.get("id"):
        return None
    return Product(
        id=str(data["id"]),
        name=str(data.get("name", "")),
        description=str(data.get("description", "")),
        sizes=[str(s) for s in data.get("sizes") or []],
    )


def _parse_cart_item(data: Any) -> Optional[CartItem]:
    if not isinstance(data, dict) or not data.get("id"):
        return None
    try:
        quantity = int(data.get("quantity", 1))
    except (TypeError, ValueError):
        quantity = 1
    return CartItem(
        id=str(data["id"]),
        name=str(data.get("name", "")),
        quantity=quantity,
        size=str(data.get("size") or ""),
    )


@dataclass
class PageState:
    """Snapshot of the storefront page as reported by the browser."""
    path: str = "/"
    product: Optional[Product] = None
    products: List[Product] = field(default_factory=list)
    cart: List[CartItem] = field(default_factory=list)
    selected_size: Optional[str] = None
    quantity: int = 1
    filter_options: Dict[str, List[str]] = field(default_factory=dict)
    locale: Optional[str] = None

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "PageState":
        products = [_parse_product(p) for p in message.get("products") or []]
        cart = [_parse_cart_item(c) for c in message.get("cart") or []]
        options = message.get("filter_options") or {}
        try:
            quantity = int(message.get("quantity") or 1)
        except (TypeError, ValueError):
            quantity = 1
        return cls(
            path=str(message.get("path") or "/"),
            product=_parse_product(message.get("product")),
            products=[p for p in products if p is not None],
            cart=[c for c in cart if c is not None],
            selected_size=message.get("selected_size") or None,
            quantity=quantity,
            filter_options={
                str(key): [str(v) for v in values]
                for key, values in options.items()
                if isinstance(values, list)
            },
            locale=normalize_locale(message.get("locale")),
        )


def _parse_transcript(message: Dict[str, Any]) -> TranscriptEvent:
    timestamp = message.get("timestamp")
    return TranscriptEvent(
        text=str(message.get("text") or ""),
        timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else time.time(),
        session_id=str(message.get("session_id") or ""),
        is_final=bool(message.get("is_final", True)),
    )


def parse_session_message(raw_message: Any) -> tuple[SessionEventType, Any]:
    """
    Parse a raw relay WebSocket message.

    Returns:
        Tuple of (event_type, parsed_event)

    Raises:
        ValueError: If message cannot be parsed
    """
    try:
        message = decoder.decode(raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message)
    except msgspec.DecodeError as e:
        logger.error("Failed to parse relay message", error=str(e))
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Relay message must be a JSON object")

    event_type_str = message.get("type", "")
    try:
        event_type = SessionEventType(event_type_str)
    except ValueError:
        logger.warning("Unknown relay message type", event_type=event_type_str)
        raise ValueError(f"Unknown message type: {event_type_str}")

    if event_type == SessionEventType.TRANSCRIPT:
        return event_type, _parse_transcript(message)
    elif event_type == SessionEventType.ERROR:
        return event_type, SessionErrorEvent.from_message(message)
    elif event_type == SessionEventType.PAGE_STATE:
        return event_type, PageState.from_message(message)
    else:
        return event_type, message


def _encode(message: Dict[str, Any]) -> str:
    return encoder.encode(message).decode("utf-8")


def create_start_message(session_id: str) -> str:
    return _encode({"type": "start", "session_id": session_id})


def create_stop_message() -> str:
    return _encode({"type": "stop"})


def create_say_message(text: str) -> str:
    return _encode({"type": "say", "text": text})


def create_ui_message(command: str, **args: Any) -> str:
    return _encode({"type": "ui", "command": command, "args": args})


def create_profile_message(fields: Dict[str, Any]) -> str:
    return _encode({"type": "profile", "fields": fields})


def create_action_message(entry: Dict[str, Any]) -> str:
    return _encode({"type": "action", **entry})


def create_connection_message(state: str) -> str:
    return _encode({"type": "connection", "state": state})
