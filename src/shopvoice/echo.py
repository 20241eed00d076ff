"""
Transcript normalizer and echo suppressor.

The speech session hears the room, which includes the assistant's own voice.
Every transcript is filtered here before any interpretation happens:

1. too short (< 2 characters)            -> reject
2. system speech in progress             -> reject
3. inside the post-speech window         -> reject
4. content matches the last system text  -> reject

Rule 4 compares alphanumeric-only, lower-cased text. The thresholds are
asymmetric: the last prompt must be longer than 5 characters to be found
inside a transcript, while a transcript must be longer than 10 characters to
be found inside the prompt. This keeps answers like "yes" from matching short
prompts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.shopvoice.text import normalize_compact

MIN_TRANSCRIPT_CHARS = 2
PROMPT_IN_TRANSCRIPT_MIN_CHARS = 5
TRANSCRIPT_IN_PROMPT_MIN_CHARS = 10


@dataclass(frozen=True)
class TranscriptEvent:
    """One recognized utterance from the speech session."""
    text: str
    timestamp: float
    session_id: str = ""
    is_final: bool = True


@dataclass(frozen=True)
class SpokenPromptRecord:
    """The most recent system utterance."""
    text: str
    timestamp: float


@dataclass(frozen=True)
class EchoContext:
    """Everything should_accept needs to judge a transcript."""
    now: float
    window_ms: int
    system_speaking: bool = False
    last_speech_end: Optional[float] = None
    last_spoken: str = ""


@dataclass(frozen=True)
class EchoDecision:
    accept: bool
    reason: str = ""


def is_echo_of(transcript: str, spoken: str) -> bool:
    """Content-only echo check between a transcript and one system utterance."""
    heard = normalize_compact(transcript)
    said = normalize_compact(spoken)
    if not heard or not said:
        return False
    if heard == said:
        return True
    if len(said) > PROMPT_IN_TRANSCRIPT_MIN_CHARS and said in heard:
        return True
    if len(heard) > TRANSCRIPT_IN_PROMPT_MIN_CHARS and heard in said:
        return True
    return False


def should_accept(transcript: str, context: EchoContext) -> EchoDecision:
    if len((transcript or "").strip()) < MIN_TRANSCRIPT_CHARS:
        return EchoDecision(False, "too_short")

    if context.system_speaking:
        return EchoDecision(False, "system_speaking")

    if context.last_speech_end is not None:
        elapsed_ms = (context.now - context.last_speech_end) * 1000
        if elapsed_ms < context.window_ms:
            return EchoDecision(False, "suppression_window")

    if context.last_spoken and is_echo_of(transcript, context.last_spoken):
        return EchoDecision(False, "echo")

    return EchoDecision(True)
