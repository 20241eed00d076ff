"""
Guided checkout dialogue.

A deterministic state machine that collects the shopper's details one field at
a time, in a fixed order:

    idle -> name -> email -> address -> phone -> cardName -> cardNumber
         -> expiryDate -> cvv -> confirm -> complete

Only validated values are stored. A failed answer is re-prompted with the
validator's correction message and never advances the step. Answers that
arrive right after a step change (grace period) or that repeat one of our own
prompts are dropped silently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import re
import time
from typing import Any, Callable, Dict, Optional

import structlog

from src.shopvoice.echo import is_echo_of
from src.shopvoice.errors import RecoverableInputError
from src.shopvoice.fields import CORRECTION_PROMPTS, FieldKind, extract_and_validate
from src.shopvoice.profile import ProfileStore
from src.shopvoice.text import matches_any, normalize_compact

logger = structlog.get_logger(__name__)


class CheckoutStep(str, Enum):
    """Guided checkout state."""

    IDLE = "idle"
    NAME = "name"
    EMAIL = "email"
    ADDRESS = "address"
    PHONE = "phone"
    CARD_NAME = "cardName"
    CARD_NUMBER = "cardNumber"
    EXPIRY_DATE = "expiryDate"
    CVV = "cvv"
    CONFIRM = "confirm"
    COMPLETE = "complete"


STEP_ORDER: tuple[CheckoutStep, ...] = (
    CheckoutStep.NAME,
    CheckoutStep.EMAIL,
    CheckoutStep.ADDRESS,
    CheckoutStep.PHONE,
    CheckoutStep.CARD_NAME,
    CheckoutStep.CARD_NUMBER,
    CheckoutStep.EXPIRY_DATE,
    CheckoutStep.CVV,
    CheckoutStep.CONFIRM,
    CheckoutStep.COMPLETE,
)

STEP_FIELDS: Dict[CheckoutStep, FieldKind] = {
    CheckoutStep.NAME: FieldKind.NAME,
    CheckoutStep.EMAIL: FieldKind.EMAIL,
    CheckoutStep.ADDRESS: FieldKind.ADDRESS,
    CheckoutStep.PHONE: FieldKind.PHONE,
    CheckoutStep.CARD_NAME: FieldKind.CARD_NAME,
    CheckoutStep.CARD_NUMBER: FieldKind.CARD_NUMBER,
    CheckoutStep.EXPIRY_DATE: FieldKind.EXPIRY_DATE,
    CheckoutStep.CVV: FieldKind.CVV,
}

STEP_PROMPTS: Dict[CheckoutStep, str] = {
    CheckoutStep.NAME: "Let's complete your order. What is your full name?",
    CheckoutStep.EMAIL: "Great! What is your email address?",
    CheckoutStep.ADDRESS: "What is your shipping address?",
    CheckoutStep.PHONE: "What is your phone number?",
    CheckoutStep.CARD_NAME: "Now for payment details. What name is on your card?",
    CheckoutStep.CARD_NUMBER: "What is your card number?",
    CheckoutStep.EXPIRY_DATE: "What is the expiry date? Please say it as month and year.",
    CheckoutStep.CVV: "What is the CVV or security code on the back of your card?",
    CheckoutStep.CONFIRM: "I have all your details. Would you like me to place the order?",
    CheckoutStep.COMPLETE: "Your order has been placed successfully!",
}

CANCELLED_PROMPT = "Order cancelled. Let me know if you need anything else."
CONFIRM_REPROMPT = "Please say yes to confirm or no to cancel."

KNOWN_PROMPTS: tuple[str, ...] = (
    tuple(STEP_PROMPTS.values()) + CORRECTION_PROMPTS + (CANCELLED_PROMPT, CONFIRM_REPROMPT)
)

_FILLER_ACKS = frozenset(
    normalize_compact(w)
    for w in ("yes", "no", "ok", "okay", "sure", "yeah", "yep", "nope", "uh huh", "mhm", "hmm", "um", "uh")
)

_CONFIRM_YES_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\b(yes|yeah|yep|yup|sure|ok|okay|correct)\b",
        r"\b(confirm|confirmed|place|proceed|go ahead|do it)\b",
    )
)

_CONFIRM_NO_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\b(no|nope|nah|cancel|stop)\b",
        r"\b(don'?t|do not)\b",
    )
)

_GO_BACK_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\bgo back\b",
        r"\bprevious (?:step|question)\b",
        r"\b(?:that'?s|that is) (?:wrong|not right|incorrect)\b",
    )
)


@dataclass
class CheckoutSession:
    """Mutable dialogue state, owned by CheckoutFlow."""

    step: CheckoutStep = CheckoutStep.IDLE
    collected: Dict[FieldKind, str] = field(default_factory=dict)
    last_step_change: Optional[float] = None
    active: bool = False


@dataclass(frozen=True)
class AnswerResult:
    """What the caller should do after one answer."""

    accepted: bool
    next_prompt: str = ""
    should_finalize: bool = False
    reason: str = ""


class CheckoutFlow:
    """
    Guided checkout state machine.

    The clock is injectable so grace-period behaviour can be tested without
    sleeping; it must return seconds.
    """

    def __init__(
        self,
        profile_store: Optional[ProfileStore] = None,
        *,
        grace_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        config: Optional[Any] = None,
    ):
        if grace_ms is None:
            if config is None:
                from src.shopvoice.config import get_config

                config = get_config()
            grace_ms = config.checkout_grace_ms

        self._profile_store = profile_store
        self._grace_ms = grace_ms
        self._clock = clock
        self._session = CheckoutSession()

    @property
    def step(self) -> CheckoutStep:
        return self._session.step

    @property
    def is_active(self) -> bool:
        return self._session.active

    @property
    def collected(self) -> Dict[str, str]:
        """Validated values keyed by field name."""
        return {kind.value: value for kind, value in self._session.collected.items()}

    def current_prompt(self) -> str:
        return STEP_PROMPTS.get(self._session.step, "")

    def start_flow(self) -> str:
        """Begin (or restart) the dialogue at the first step and return its prompt."""
        self._session = CheckoutSession(active=True)
        self._enter(CheckoutStep.NAME)
        logger.info("Checkout started")
        return self.current_prompt()

    def stop_flow(self) -> None:
        if not self._session.active and self._session.step == CheckoutStep.IDLE:
            return
        self._session = CheckoutSession()
        logger.info("Checkout stopped")

    def process_answer(self, transcript: str) -> AnswerResult:
        session = self._session
        if not session.active:
            return AnswerResult(False, reason="idle")

        if self._within_grace():
            return AnswerResult(False, reason="grace")

        if session.step == CheckoutStep.CONFIRM:
            return self._process_confirmation(transcript)

        if self._is_echo(transcript):
            logger.debug("Checkout answer dropped as echo", step=session.step.value)
            return AnswerResult(False, reason="echo")

        if matches_any(_GO_BACK_PATTERNS, transcript):
            return self._go_back()

        kind = STEP_FIELDS[session.step]
        try:
            value = extract_and_validate(kind, transcript).unwrap()
        except RecoverableInputError as e:
            logger.info("Checkout answer rejected", step=session.step.value)
            return AnswerResult(False, next_prompt=e.correction_prompt, reason="invalid")

        session.collected[kind] = value
        self._write_profile(kind, value)
        self._enter(self._next_step(session.step))
        logger.info("Checkout step advanced", field=kind.value, step=session.step.value)
        return AnswerResult(True, next_prompt=self.current_prompt(), reason="advanced")

    def _process_confirmation(self, transcript: str) -> AnswerResult:
        yes = matches_any(_CONFIRM_YES_PATTERNS, transcript)
        no = matches_any(_CONFIRM_NO_PATTERNS, transcript)

        if yes and not no:
            self._enter(CheckoutStep.COMPLETE)
            self._session.active = False
            logger.info("Checkout confirmed")
            return AnswerResult(
                True,
                next_prompt=STEP_PROMPTS[CheckoutStep.COMPLETE],
                should_finalize=True,
                reason="confirmed",
            )

        if no and not yes:
            self.stop_flow()
            return AnswerResult(True, next_prompt=CANCELLED_PROMPT, reason="cancelled")

        return AnswerResult(False, next_prompt=CONFIRM_REPROMPT, reason="unclear")

    def _go_back(self) -> AnswerResult:
        index = STEP_ORDER.index(self._session.step)
        previous = STEP_ORDER[max(index - 1, 0)]
        kind = STEP_FIELDS.get(previous)
        if kind is not None:
            self._session.collected.pop(kind, None)
        self._enter(previous)
        logger.info("Checkout went back", step=previous.value)
        return AnswerResult(True, next_prompt=self.current_prompt(), reason="went_back")

    def _is_echo(self, transcript: str) -> bool:
        if normalize_compact(transcript) in _FILLER_ACKS:
            return True
        return any(is_echo_of(transcript, prompt) for prompt in KNOWN_PROMPTS)

    def _within_grace(self) -> bool:
        changed = self._session.last_step_change
        if changed is None:
            return False
        return (self._clock() - changed) * 1000 < self._grace_ms

    def _enter(self, step: CheckoutStep) -> None:
        self._session.step = step
        self._session.last_step_change = self._clock()

    @staticmethod
    def _next_step(step: CheckoutStep) -> CheckoutStep:
        return STEP_ORDER[STEP_ORDER.index(step) + 1]

    def _write_profile(self, kind: FieldKind, value: str) -> None:
        if self._profile_store is None:
            return
        try:
            self._profile_store.update({kind.value: value})
        except Exception as e:
            logger.warning("Profile write failed", field=kind.value, error=str(e))
