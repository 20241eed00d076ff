"""
Speech session supervision.

Keeps one logical conversation connected to the speech session provider:

- unexpected end while the session had been active -> reconnect after a short
  backoff (RECONNECT_END_BACKOFF_SECONDS)
- transient error -> reconnect after a longer backoff
  (RECONNECT_ERROR_BACKOFF_SECONDS)
- fatal error (auth/ejection) -> reconnection disabled until a manual start
- manual stop -> reconnection disabled, pending timer cancelled

Automatic reconnects are bounded by RECONNECT_MAX_ATTEMPTS consecutive tries;
the counter resets on every successful connect. The transcript consumer is
subscribed on every successful (re)connect and dropped when the session ends.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import re
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog

from src.shopvoice.echo import TranscriptEvent
from src.shopvoice.errors import SessionError, SessionFatalError, SessionTransientError

logger = structlog.get_logger(__name__)

TranscriptConsumer = Callable[[TranscriptEvent], Awaitable[None]]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERRORING = "erroring"


class ReconnectMode(str, Enum):
    COUNTING = "counting"
    DISABLED = "disabled"


@dataclass
class ReconnectPolicy:
    """Bounded reconnect budget with an explicit disabled mode."""

    max_attempts: int = 3
    mode: ReconnectMode = ReconnectMode.COUNTING
    attempts: int = 0

    @property
    def can_retry(self) -> bool:
        return self.mode == ReconnectMode.COUNTING and self.attempts < self.max_attempts

    def consume(self) -> int:
        self.attempts += 1
        return self.attempts

    def reset(self) -> None:
        self.attempts = 0

    def disable(self) -> None:
        self.mode = ReconnectMode.DISABLED

    def rearm(self) -> None:
        self.mode = ReconnectMode.COUNTING
        self.attempts = 0


class SpeechSession(Protocol):
    async def start(self, session_id: str) -> None:
        ...

    async def stop(self) -> None:
        ...

    async def send_system_utterance(self, text: str) -> None:
        ...

    def subscribe(self, consumer: TranscriptConsumer) -> None:
        ...

    def unsubscribe(self) -> None:
        ...


_FATAL_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bauth",
        r"unauthori[sz]ed",
        r"forbidden",
        r"\b40[13]\b",
        r"invalid (?:api )?key",
        r"permission denied",
        r"eject",
        r"meeting (?:has )?ended",
        r"kicked|banned",
    )
)


def classify_session_error(kind: str, message: str) -> SessionError:
    """Authentication/ejection class errors are fatal; everything else is transient."""
    text = f"{kind or ''} {message or ''}"
    if any(p.search(text) for p in _FATAL_ERROR_PATTERNS):
        return SessionFatalError(message or kind, kind=kind)
    return SessionTransientError(message or kind, kind=kind)


class SessionSupervisor:
    """Owns the session handle for one conversation."""

    def __init__(
        self,
        session: SpeechSession,
        consumer: TranscriptConsumer,
        *,
        session_id: Optional[str] = None,
        config: Optional[Any] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        if config is None:
            from src.shopvoice.config import get_config

            config = get_config()

        self._session = session
        self._consumer = consumer
        self._session_id = session_id if session_id is not None else config.assistant_id
        self._end_backoff = config.reconnect_end_backoff_seconds
        self._error_backoff = config.reconnect_error_backoff_seconds
        self._on_state_change = on_state_change

        self.policy = ReconnectPolicy(max_attempts=config.reconnect_max_attempts)
        self.was_active = False
        self._state = ConnectionState.IDLE
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def start(self) -> None:
        """Manual start; re-arms automatic reconnection."""
        self.policy.rearm()
        self._cancel_reconnect()
        await self._connect()

    async def stop(self) -> None:
        """Manual stop; no reconnect can fire after this returns."""
        self.policy.disable()
        self._cancel_reconnect()
        self.was_active = False
        self._session.unsubscribe()
        self._set_state(ConnectionState.IDLE)
        try:
            await self._session.stop()
        except Exception as e:
            logger.warning("Speech session stop failed", error=str(e))

    def on_session_started(self) -> None:
        self._cancel_reconnect()
        self.policy.reset()
        self.was_active = True
        self._session.subscribe(self._consumer)
        self._set_state(ConnectionState.ACTIVE)
        logger.info("Speech session active")

    def on_session_ended(self) -> None:
        self._session.unsubscribe()
        if self._state == ConnectionState.ERRORING:
            # on_error already handled this drop
            return
        self._set_state(ConnectionState.IDLE)
        if not self.was_active:
            return
        logger.info("Speech session ended unexpectedly")
        self._schedule_reconnect(self._end_backoff, reason="session_ended")

    def on_error(self, kind: str, message: str) -> None:
        error = classify_session_error(kind, message)
        self._session.unsubscribe()
        self.was_active = False
        self._set_state(ConnectionState.ERRORING)

        if isinstance(error, SessionFatalError):
            logger.error("Speech session fatal error", kind=kind, error=str(error))
            self.policy.disable()
            self._cancel_reconnect()
            return

        logger.warning("Speech session transient error", kind=kind, error=str(error))
        self._schedule_reconnect(self._error_backoff, reason="transient_error")

    async def _connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._session.start(self._session_id)
        except Exception as e:
            self.on_error("start_failed", str(e))

    def _schedule_reconnect(self, delay: float, *, reason: str) -> None:
        if not self.policy.can_retry:
            logger.warning(
                "Reconnect suppressed",
                reason=reason,
                mode=self.policy.mode.value,
                attempts=self.policy.attempts,
            )
            return

        attempt = self.policy.consume()
        self._cancel_reconnect()
        logger.info("Reconnect scheduled", reason=reason, attempt=attempt, delay_s=delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        if self.policy.mode == ReconnectMode.DISABLED:
            return
        await self._connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)
