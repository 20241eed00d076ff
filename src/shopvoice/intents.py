"""
Intent classification for shopper voice commands.

Deterministic overrides run first (order phrases, language switches, "clear
all filters"); everything else goes to the oracle with the master classifier
template. Classification never raises: any oracle failure, timeout or
unparseable answer degrades to GENERAL_COMMAND.
"""

from __future__ import annotations

from enum import Enum
import re
from typing import Any, Optional

import structlog

from src.shopvoice.errors import ClassificationDegraded, OracleError
from src.shopvoice.fields import contains_order_command
from src.shopvoice.language import detect_language_switch_command
from src.shopvoice.oracle import Oracle, extract_json
from src.shopvoice.prompts import render_prompt
from src.shopvoice.text import matches_any, redact_transcript_for_logs

logger = structlog.get_logger(__name__)


class Intent(str, Enum):
    """Closed set of shopper intents."""

    NAVIGATION = "navigation"
    ORDER_COMPLETION = "order_completion"
    USER_INFO = "user_info"
    CART = "cart"
    PRODUCT_ACTION = "product_action"
    PRODUCT_NAVIGATION = "product_navigation"
    REMOVE_FILTER = "remove_filter"
    CATEGORY_NAVIGATION = "category_navigation"
    APPLY_FILTER = "apply_filter"
    CLEAR_FILTERS = "clear_filters"
    GENERAL_COMMAND = "general_command"
    SWITCH_LANGUAGE = "switch_language"


_CLEAR_FILTERS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\b(?:clear|reset|remove|delete) (?:all )?(?:the |my |of the )?filters\b",
        r"\bno filters\b",
    )
)

# Longest labels first so "product_navigation" wins over "navigation".
_LABEL_RE = re.compile(
    r"\b("
    + "|".join(sorted((re.escape(i.value) for i in Intent), key=len, reverse=True))
    + r")\b"
)


def manual_override(transcript: str) -> Optional[Intent]:
    """High-value phrases that bypass the oracle."""
    if contains_order_command(transcript):
        return Intent.ORDER_COMPLETION
    if detect_language_switch_command(transcript):
        return Intent.SWITCH_LANGUAGE
    if matches_any(_CLEAR_FILTERS_PATTERNS, transcript):
        return Intent.CLEAR_FILTERS
    return None


def parse_intent_label(answer: str) -> Optional[Intent]:
    """
    Read an intent label out of a free-form oracle answer.

    Accepts bare labels, quoted labels, code-fenced labels, and JSON like
    {"intent": "cart"}. Returns None when no known label is present.
    """
    if not answer:
        return None

    data = extract_json(answer)
    if isinstance(data, dict) and isinstance(data.get("intent"), str):
        answer = data["intent"]

    text = answer.lower().replace("-", "_")
    match = _LABEL_RE.search(text)
    if not match:
        return None
    return Intent(match.group(1))


class IntentClassifier:
    """Maps a transcript to one Intent."""

    def __init__(self, oracle: Oracle, config: Optional[Any] = None):
        self._oracle = oracle
        self._config = config

    async def classify(self, transcript: str) -> Intent:
        override = manual_override(transcript)
        if override is not None:
            logger.info("Intent override matched", intent=override.value)
            return override

        prompt = render_prompt("master_intent", config=self._config, transcript=transcript)
        try:
            answer = await self._oracle.complete(prompt)
            intent = parse_intent_label(answer)
            if intent is None:
                raise ClassificationDegraded(f"Unrecognized label: {answer[:80]!r}")
        except OracleError as e:
            logger.warning(
                "Intent classification degraded",
                transcript=redact_transcript_for_logs(transcript),
                error=str(e),
            )
            return Intent.GENERAL_COMMAND
        except Exception as e:
            logger.error("Intent classification failed", error=str(e))
            return Intent.GENERAL_COMMAND

        logger.info("Intent classified", intent=intent.value)
        return intent
