"""
Error taxonomy for the voice shopping assistant.

Input and classification errors never escape the transcript pipeline; session
errors stay inside the session supervisor.
"""

from typing import Optional


class ShopVoiceError(Exception):
    """Base class for all assistant errors."""
    pass


class RecoverableInputError(ShopVoiceError):
    """A dialogue answer was malformed or ambiguous; re-prompt without advancing."""

    def __init__(self, correction_prompt: str):
        super().__init__(correction_prompt)
        self.correction_prompt = correction_prompt


class OracleError(ShopVoiceError):
    """The classification/extraction oracle failed or timed out."""
    pass


class ClassificationDegraded(OracleError):
    """The oracle answered, but nothing usable could be decoded from it."""
    pass


class SessionError(ShopVoiceError):
    """Base class for speech session failures."""

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind or ""


class SessionTransientError(SessionError):
    """Unexpected drop; eligible for bounded automatic reconnection."""
    pass


class SessionFatalError(SessionError):
    """Authentication/ejection class failure; requires a manual restart."""
    pass
