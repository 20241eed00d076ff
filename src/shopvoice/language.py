"""
Language utilities for the voice assistant.

Provides a small, deterministic layer to detect explicit shopper requests to
switch the storefront/assistant language (English <-> Arabic).
"""

from __future__ import annotations

import re
import unicodedata
from typing import Literal, Optional

LocaleCode = Literal["en", "ar"]


def _normalize_for_matching(text: str) -> str:
    text = (text or "").strip().lower()
    text = unicodedata.normalize("NFKD", text)
    # Drops Latin accents and Arabic diacritics/hamza marks alike.
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"\s+", " ", text)
    return text


_ARABIC_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\bspeak\s+(?:in\s+)?arabic\b",
        r"\btalk\s+in\s+arabic\b",
        r"\bin\s+arabic\b",
        r"\bswitch\s+(?:the\s+language\s+)?to\s+arabic\b",
        r"\bchange\s+(?:the\s+)?language\s+to\s+arabic\b",
        r"\barabic\s+(?:assistant|version|please)\b",
        r"بالعربي",
        r"\bعربي\b",
        r"\bاللغة\s+العربية\b",
    )
)

_ENGLISH_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\bspeak\s+(?:in\s+)?english\b",
        r"\btalk\s+in\s+english\b",
        r"\bin\s+english\b",
        r"\bswitch\s+(?:the\s+language\s+)?to\s+english\b",
        r"\bchange\s+(?:the\s+)?language\s+to\s+english\b",
        r"\benglish\s+please\b",
        r"بالانجليزي",
        r"\bانجليزي\b",
        r"\bاللغة\s+الانجليزية\b",
    )
)


def detect_language_switch_command(text: str) -> Optional[LocaleCode]:
    """
    Detect an explicit shopper request to switch the language.

    Returns:
        "ar" if the shopper asked to switch to Arabic
        "en" if the shopper asked to switch to English
        None otherwise
    """
    normalized = _normalize_for_matching(text)

    for pattern in _ARABIC_PATTERNS:
        if pattern.search(normalized):
            return "ar"

    for pattern in _ENGLISH_PATTERNS:
        if pattern.search(normalized):
            return "en"

    return None


def normalize_locale(value: Optional[str]) -> Optional[LocaleCode]:
    """Normalize a locale tag ("ar-SA", "en_US", ...) into "ar"/"en"."""
    if not value:
        return None
    norm = value.strip().lower()
    if norm.startswith("ar"):
        return "ar"
    if norm.startswith("en"):
        return "en"
    return None
