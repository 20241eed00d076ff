"""
Command routing for classified transcripts.

Each intent maps to exactly one handler with a boolean "handled" contract.
When the primary handler declines, the fallback chain (navigation, then cart)
is tried, then a plain "home"/"cart" keyword navigation, before the command
is logged as not recognized. Handlers are injected directly; the router keeps
no state besides the action log.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import re
import time
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Protocol, Sequence

import structlog

from src.shopvoice.intents import Intent, IntentClassifier
from src.shopvoice.text import normalize_for_intent, redact_transcript_for_logs

logger = structlog.get_logger(__name__)

FALLBACK_CHAIN: tuple[Intent, ...] = (Intent.NAVIGATION, Intent.CART)

# Last resort when no handler consumed the command
KEYWORD_ROUTES: tuple[tuple[re.Pattern[str], str, str], ...] = (
    (re.compile(r"\bhome\b"), "/", "Navigated Home"),
    (re.compile(r"\bcart\b"), "/cart", "Opened Cart"),
)


@dataclass(frozen=True)
class ActionLogEntry:
    """One observable thing the assistant did (or failed to do)."""
    description: str
    success: bool = True
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "success": self.success,
            "timestamp": self.timestamp,
        }


class ActionLog:
    """Bounded, newest-first log of assistant actions."""

    def __init__(
        self,
        maxlen: int = 20,
        on_entry: Optional[Callable[[ActionLogEntry], None]] = None,
    ):
        self._entries: Deque[ActionLogEntry] = deque(maxlen=maxlen)
        self._on_entry = on_entry

    def add(self, description: str, success: bool = True) -> ActionLogEntry:
        entry = ActionLogEntry(description=description, success=success)
        self._entries.appendleft(entry)
        if self._on_entry:
            self._on_entry(entry)
        return entry

    @property
    def latest(self) -> Optional[ActionLogEntry]:
        return self._entries[0] if self._entries else None

    def entries(self) -> List[ActionLogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class CommandHandler(Protocol):
    async def handle(self, transcript: str) -> bool:
        ...


@dataclass(frozen=True)
class RouteOutcome:
    intent: Intent
    handled: bool
    handled_by: Optional[Intent] = None


class CommandRouter:
    """Dispatch table from Intent to handler."""

    def __init__(
        self,
        classifier: IntentClassifier,
        handlers: Mapping[Intent, CommandHandler],
        action_log: Optional[ActionLog] = None,
        fallback_chain: Sequence[Intent] = FALLBACK_CHAIN,
        navigate: Optional[Callable[[str], None]] = None,
    ):
        self._classifier = classifier
        self._handlers: Dict[Intent, CommandHandler] = dict(handlers)
        self._fallback_chain = tuple(fallback_chain)
        self.action_log = action_log or ActionLog()
        self._navigate = navigate

    async def route(self, transcript: str) -> RouteOutcome:
        self.action_log.add(f"Processing: {redact_transcript_for_logs(transcript)}")

        intent = await self._classifier.classify(transcript)
        tried: List[Intent] = []

        for candidate in (intent,) + self._fallback_chain:
            if candidate in tried:
                continue
            handler = self._handlers.get(candidate)
            if handler is None:
                continue
            tried.append(candidate)
            if await self._run(candidate, handler, transcript):
                if candidate != intent:
                    logger.info("Fallback handler consumed command", intent=intent.value, handler=candidate.value)
                return RouteOutcome(intent, True, candidate)

        if self._navigate_by_keyword(transcript):
            return RouteOutcome(intent, True)

        logger.info("Command not recognized", intent=intent.value, tried=[i.value for i in tried])
        self.action_log.add("Command not recognized", success=False)
        return RouteOutcome(intent, False)

    def _navigate_by_keyword(self, transcript: str) -> bool:
        if self._navigate is None:
            return False
        text = normalize_for_intent(transcript)
        for pattern, path, description in KEYWORD_ROUTES:
            if pattern.search(text):
                self._navigate(path)
                self.action_log.add(description)
                logger.info("Keyword navigation", path=path)
                return True
        return False

    async def _run(self, intent: Intent, handler: CommandHandler, transcript: str) -> bool:
        try:
            return bool(await handler.handle(transcript))
        except Exception as e:
            logger.error("Handler failed", handler=intent.value, error=str(e))
            self.action_log.add("Error processing command", success=False)
            return False
