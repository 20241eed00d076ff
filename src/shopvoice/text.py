"""
Text helpers shared by the transcript pipeline.

Everything here is pure and dependency-free.
"""

from __future__ import annotations

import re
import unicodedata


def normalize_for_intent(text: str) -> str:
    """Lower-case, strip accents, and collapse whitespace."""
    text = (text or "").strip().lower()
    text = text.replace("’", "'")
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"\s+", " ", text)
    return text


def normalize_compact(text: str) -> str:
    """Lower-case and strip every non-alphanumeric character (spaces included)."""
    return "".join(ch for ch in normalize_for_intent(text) if ch.isalnum())


def matches_any(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    t = normalize_for_intent(text)
    if not t:
        return False
    return any(p.search(t) for p in patterns)


_EMAIL_RE = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
_LONG_DIGITS_RE = re.compile(r"(?:\d[\s\-.()]*){7,}\d")


def redact_transcript_for_logs(text: str) -> str:
    """
    Best-effort redaction for logs (to reduce accidental PII exposure).

    This is not a compliance-grade scrubber; it masks common patterns:
    - emails -> [EMAIL]
    - long digit runs (phone/card numbers) -> [NUMBER-***1234]
    """
    if not text:
        return ""

    redacted = _EMAIL_RE.sub("[EMAIL]", text)

    def _mask_digits(match: re.Match[str]) -> str:
        digits = re.sub(r"\D+", "", match.group(0) or "")
        last4 = digits[-4:] if len(digits) >= 4 else digits
        return f"[NUMBER-***{last4}]"

    return _LONG_DIGITS_RE.sub(_mask_digits, redacted)
