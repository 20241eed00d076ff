"""
Field extraction and validation for guided checkout.

Each field kind has an extractor (spoken language -> raw candidate) and a
validator (raw candidate -> canonical value or correction prompt). Validators
never silently accept malformed data; a failed result carries the message the
caller should speak before asking again.

Spoken forms handled here:
- lead-in phrases ("my name is", "my email is", "i live at", ...) and fillers
- "john at gmail dot com" -> john@gmail.com
- "four one five, double five..." -> 41555...
- "twelve twenty five", "december twenty twenty five", "12/25" -> 12/25
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import wraps
import re
from typing import Callable, Dict, List

from src.shopvoice.errors import RecoverableInputError
from src.shopvoice.text import matches_any, normalize_compact, normalize_for_intent


class FieldKind(str, Enum):
    """Structured values collected by guided checkout."""

    NAME = "name"
    EMAIL = "email"
    ADDRESS = "address"
    PHONE = "phone"
    CARD_NAME = "card_name"
    CARD_NUMBER = "card_number"
    EXPIRY_DATE = "expiry_date"
    CVV = "cvv"


@dataclass(frozen=True)
class FieldResult:
    """Outcome of validating one candidate value."""

    valid: bool
    value: str = ""
    correction_prompt: str = ""

    @classmethod
    def ok(cls, value: str) -> "FieldResult":
        return cls(True, value=value)

    @classmethod
    def fail(cls, correction_prompt: str) -> "FieldResult":
        return cls(False, correction_prompt=correction_prompt)

    def unwrap(self) -> str:
        """Return the canonical value or raise RecoverableInputError."""
        if not self.valid:
            raise RecoverableInputError(self.correction_prompt)
        return self.value


NAME_PROMPT = "I didn't catch your name. Please say your full name."
CARD_NAME_PROMPT = "I didn't catch the name on your card. Please say it as it appears on the card."
EMAIL_PROMPT = "I didn't catch a valid email. Please say it like: name at gmail dot com."
ADDRESS_PROMPT = "Please say your complete shipping address, including the street and city."
PHONE_PROMPT = "Please say your complete 10-digit phone number."
CARD_NUMBER_PROMPT = "Please say all the digits of your card number."
EXPIRY_PROMPT = "Please say the expiry date as month and year, like 12 25."
EXPIRY_MONTH_PROMPT = "Please say a valid month between 1 and 12."
CVV_PROMPT = "The CVV should be 3 or 4 digits. Please say the numbers."
ORDER_GUARD_PROMPT = "I'll place the order once I have all your details. Please answer the question first."

CORRECTION_PROMPTS: tuple[str, ...] = (
    NAME_PROMPT,
    CARD_NAME_PROMPT,
    EMAIL_PROMPT,
    ADDRESS_PROMPT,
    PHONE_PROMPT,
    CARD_NUMBER_PROMPT,
    EXPIRY_PROMPT,
    EXPIRY_MONTH_PROMPT,
    CVV_PROMPT,
    ORDER_GUARD_PROMPT,
)


_ORDER_COMMAND_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\bplace (?:my |the |an |this )?order\b",
        r"\bcheckout\b",
        r"\bcheck (?:me )?out now\b",
        r"\bcheck (?:me )?out(?: please)?[\s.!?]*$",
        r"\bbuy (?:it |this |these |them )?now\b",
        r"\bcomplete (?:my |the )?(?:order|purchase)\b",
        r"\bsubmit (?:my |the )?order\b",
        r"\bfinish (?:my |the )?(?:order|purchase|checkout)\b",
        r"\bpay now\b",
    )
)


def contains_order_command(text: str) -> bool:
    """True when the text contains an order-completion command phrase."""
    return matches_any(_ORDER_COMMAND_PATTERNS, text)


def _order_guard(validator: Callable[[str], FieldResult]) -> Callable[[str], FieldResult]:
    @wraps(validator)
    def wrapper(candidate: str) -> FieldResult:
        if contains_order_command(candidate):
            return FieldResult.fail(ORDER_GUARD_PROMPT)
        return validator(candidate)

    return wrapper


# --- spoken numbers ---

_UNITS = {
    "zero": 0, "oh": 0, "o": 0,
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9,
}
_TEENS = {
    "ten": 10, "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
    "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
_TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}
_REPEATS = {"double": 2, "triple": 3}
_MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sept": 9, "sep": 9,
    "october": 10, "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}
_NUMBER_WORDS = set(_UNITS) | set(_TEENS) | set(_TENS) | set(_REPEATS) | {"hundred", "thousand"}

_TOKEN_RE = re.compile(r"[a-z]+|\d+")


def _tokens(text: str) -> List[str]:
    return _TOKEN_RE.findall(normalize_for_intent(text).replace("-", " "))


def spoken_digits(text: str) -> str:
    """
    Convert a spoken digit sequence into a digit string.

    "four one five" -> "415", "double five" -> "55", "twenty five" -> "25",
    "5 5 5 1234" -> "5551234". Words that are not numbers are ignored.
    """
    tokens = _tokens(text)
    out: List[str] = []
    repeat = 1
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.isdigit():
            out.append(tok * repeat if len(tok) == 1 else tok)
            repeat = 1
        elif tok in _REPEATS:
            repeat = _REPEATS[tok]
        elif tok in _UNITS:
            out.append(str(_UNITS[tok]) * repeat)
            repeat = 1
        elif tok in _TEENS:
            out.append(str(_TEENS[tok]))
            repeat = 1
        elif tok in _TENS:
            value = _TENS[tok]
            nxt = tokens[i + 1] if i + 1 < len(tokens) else ""
            if nxt in _UNITS and _UNITS[nxt] > 0:
                value += _UNITS[nxt]
                i += 1
            out.append(str(value))
            repeat = 1
        elif tok == "hundred" and out:
            out.append("00")
        elif tok == "thousand" and out:
            out.append("000")
        i += 1
    return "".join(out)


def spoken_numbers(text: str) -> List[int]:
    """
    Group spoken or written numbers into integers, in order.

    "twelve twenty five" -> [12, 25]; "oh three twenty six" -> [3, 26];
    "december 2025" -> [12, 2025]; "12/25" -> [12, 25].
    """
    tokens = _tokens(text)
    numbers: List[int] = []
    pending_tens = None
    pending_zero = False

    def flush() -> None:
        nonlocal pending_tens, pending_zero
        if pending_tens is not None:
            numbers.append(pending_tens)
        elif pending_zero:
            numbers.append(0)
        pending_tens = None
        pending_zero = False

    for tok in tokens:
        if tok.isdigit():
            flush()
            numbers.append(int(tok))
        elif tok in _MONTHS:
            flush()
            numbers.append(_MONTHS[tok])
        elif tok in ("oh", "zero", "o"):
            flush()
            pending_zero = True
        elif tok in _UNITS:
            unit = _UNITS[tok]
            if pending_tens is not None:
                numbers.append(pending_tens + unit)
                pending_tens = None
            else:
                pending_zero = False
                numbers.append(unit)
        elif tok in _TEENS:
            flush()
            numbers.append(_TEENS[tok])
        elif tok in _TENS:
            flush()
            pending_tens = _TENS[tok]
        else:
            flush()
    flush()
    return numbers


# --- lead-in phrases ---

_FILLER_RE = re.compile(r"^(?:(?:um+|uh+|erm+|hmm+|so|well|okay|ok)\b[,.]?\s*)+", re.IGNORECASE)

_NAME_PREFIXES = (
    r"^(?:my (?:full )?name is|my name'?s|the name is|name is|this is|i am|i'm|im|call me|it'?s|it is)\b[,:\-]?\s*",
)
_CARD_NAME_PREFIXES = (
    r"^(?:the )?name on (?:the |my )?card is\b[,:\-]?\s*",
    r"^(?:the )?card ?holder(?:'?s)? name is\b[,:\-]?\s*",
    r"^(?:it'?s|it is|the card is under)\b[,:\-]?\s*",
) + _NAME_PREFIXES
_EMAIL_PREFIXES = (
    r"^(?:(?:my|the) )?e-?mail(?: address)?(?: is)?\b[,:\-]?\s*",
    r"^(?:it'?s|it is)\b[,:\-]?\s*",
)
_ADDRESS_PREFIXES = (
    r"^(?:(?:my|the) )?(?:shipping |delivery |home )?address(?: is)?\b[,:\-]?\s*",
    r"^(?:please )?(?:ship|send|deliver)(?: it)? to\b[,:\-]?\s*",
    r"^i live (?:at|on)\b[,:\-]?\s*",
    r"^(?:it'?s|it is)\b[,:\-]?\s*",
)
_PHONE_PREFIXES = (
    r"^(?:(?:my|the) )?(?:phone |cell |mobile )?(?:number|phone)(?: is)?\b[,:\-]?\s*",
    r"^(?:it'?s|it is)\b[,:\-]?\s*",
)
_CARD_NUMBER_PREFIXES = (
    r"^(?:(?:my|the) )?(?:credit |debit )?card(?: number)?(?: is)?\b[,:\-]?\s*",
    r"^(?:the )?number is\b[,:\-]?\s*",
    r"^(?:it'?s|it is)\b[,:\-]?\s*",
)
_EXPIRY_PREFIXES = (
    r"^(?:(?:my|the) )?(?:expiry|expiration)(?: date)?(?: is)?\b[,:\-]?\s*",
    r"^(?:it )?expires(?: on| in)?\b[,:\-]?\s*",
    r"^(?:it'?s|it is)\b[,:\-]?\s*",
)
_CVV_PREFIXES = (
    r"^(?:(?:my|the) )?(?:cvv|cvc|security code)(?: code)?(?: is)?\b[,:\-]?\s*",
    r"^(?:it'?s|it is)\b[,:\-]?\s*",
)


def _strip_lead_in(text: str, patterns: tuple[str, ...]) -> str:
    t = (text or "").strip().replace("’", "'")
    t = _FILLER_RE.sub("", t).strip()
    for pat in patterns:
        t = re.sub(pat, "", t, flags=re.IGNORECASE).strip()
    return t.strip(" .,!?:;-")


# --- extractors ---

def extract_name(text: str) -> str:
    return _strip_lead_in(text, _NAME_PREFIXES)


def extract_card_name(text: str) -> str:
    return _strip_lead_in(text, _CARD_NAME_PREFIXES)


_EMAIL_WORDS: tuple[tuple[str, str], ...] = (
    (r"\s*\bat (?:sign|symbol)\b\s*", "@"),
    (r"\s*\bat\b\s*", "@"),
    (r"\s*\b(?:dot|period|point)\b\s*", "."),
    (r"\s*\bunderscore\b\s*", "_"),
    (r"\s*\b(?:dash|hyphen)\b\s*", "-"),
)


def extract_email(text: str) -> str:
    t = normalize_for_intent(_strip_lead_in(text, _EMAIL_PREFIXES))
    for pattern, replacement in _EMAIL_WORDS:
        t = re.sub(pattern, replacement, t)
    t = re.sub(r"\s+", "", t)
    return t.strip(".,!?")


def extract_address(text: str) -> str:
    t = _strip_lead_in(text, _ADDRESS_PREFIXES)
    words = t.split()
    lead = 0
    while lead < len(words) and normalize_for_intent(words[lead]).strip(",.") in _NUMBER_WORDS:
        lead += 1
    if lead:
        number = spoken_digits(" ".join(words[:lead]))
        if number:
            words = [number] + words[lead:]
    return " ".join(words)


def extract_phone(text: str) -> str:
    return spoken_digits(_strip_lead_in(text, _PHONE_PREFIXES))


def extract_card_number(text: str) -> str:
    return spoken_digits(_strip_lead_in(text, _CARD_NUMBER_PREFIXES))


def extract_cvv(text: str) -> str:
    return spoken_digits(_strip_lead_in(text, _CVV_PREFIXES))


def extract_expiry_date(text: str) -> str:
    """Return the spoken expiry date as space-separated integers, e.g. "12 25"."""
    numbers = spoken_numbers(_strip_lead_in(text, _EXPIRY_PREFIXES))
    if len(numbers) == 4 and all(n < 10 for n in numbers):
        # digit by digit: "one two two five"
        numbers = [numbers[0] * 10 + numbers[1], numbers[2] * 10 + numbers[3]]
    elif len(numbers) >= 3 and numbers[1] in (19, 20) and numbers[2] < 100:
        # "twenty twenty five" spoken as a four digit year
        numbers = [numbers[0], numbers[1] * 100 + numbers[2]] + numbers[3:]
    return " ".join(str(n) for n in numbers)


# --- validators ---

_ACKNOWLEDGMENTS = {
    "yes", "yeah", "yep", "yup", "no", "nope", "ok", "okay", "sure", "right",
    "correct", "hello", "hi", "hey", "thanks", "thankyou",
}
_NAME_META_WORDS = {
    "what", "who", "why", "how", "where", "when", "name", "card", "repeat",
    "again", "sorry", "pardon", "question", "mean", "didnt", "understand",
}
_NAME_TOKEN_RE = re.compile(r"^[^\W\d_]+(?:['.\-][^\W\d_]*)*$")


def _validate_person_name(candidate: str, prompt: str) -> FieldResult:
    tokens = [t.strip(",.") for t in (candidate or "").split()]
    tokens = [t for t in tokens if t]
    if not tokens:
        return FieldResult.fail(prompt)
    if any(ch.isdigit() for ch in candidate):
        return FieldResult.fail(prompt)
    if normalize_compact(candidate) in _ACKNOWLEDGMENTS:
        return FieldResult.fail(prompt)
    if any(normalize_compact(t) in _NAME_META_WORDS for t in tokens):
        return FieldResult.fail(prompt)
    if not all(_NAME_TOKEN_RE.match(t) for t in tokens):
        return FieldResult.fail(prompt)
    if not any(sum(ch.isalpha() for ch in t) >= 2 for t in tokens):
        return FieldResult.fail(prompt)
    return FieldResult.ok(" ".join(t[:1].upper() + t[1:] for t in tokens))


@_order_guard
def validate_name(candidate: str) -> FieldResult:
    return _validate_person_name(candidate, NAME_PROMPT)


@_order_guard
def validate_card_name(candidate: str) -> FieldResult:
    return _validate_person_name(candidate, CARD_NAME_PROMPT)


_EMAIL_FULL_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}")


@_order_guard
def validate_email(candidate: str) -> FieldResult:
    value = (candidate or "").strip().lower()
    if not _EMAIL_FULL_RE.fullmatch(value):
        return FieldResult.fail(EMAIL_PROMPT)
    return FieldResult.ok(value)


@_order_guard
def validate_address(candidate: str) -> FieldResult:
    value = re.sub(r"\s+", " ", (candidate or "").strip())
    tokens = value.split()
    if len(tokens) < 3:
        return FieldResult.fail(ADDRESS_PROMPT)
    if not any(ch.isdigit() for ch in value) and len(tokens) < 4:
        return FieldResult.fail(ADDRESS_PROMPT)
    return FieldResult.ok(value)


@_order_guard
def validate_phone(candidate: str) -> FieldResult:
    digits = re.sub(r"\D+", "", candidate or "")
    if len(digits) != 10:
        return FieldResult.fail(PHONE_PROMPT)
    return FieldResult.ok(f"({digits[:3]}) {digits[3:6]}-{digits[6:]}")


@_order_guard
def validate_card_number(candidate: str) -> FieldResult:
    digits = re.sub(r"\D+", "", candidate or "")
    if not 13 <= len(digits) <= 19:
        return FieldResult.fail(CARD_NUMBER_PROMPT)
    return FieldResult.ok(" ".join(digits[i:i + 4] for i in range(0, len(digits), 4)))


@_order_guard
def validate_expiry_date(candidate: str) -> FieldResult:
    ints = re.findall(r"\d+", candidate or "")
    if len(ints) == 1 and len(ints[0]) in (3, 4):
        ints = [ints[0][:-2], ints[0][-2:]]
    if len(ints) < 2:
        return FieldResult.fail(EXPIRY_PROMPT)

    month = int(ints[0])
    year = ints[1][-2:].zfill(2)
    if not 1 <= month <= 12:
        return FieldResult.fail(EXPIRY_MONTH_PROMPT)
    return FieldResult.ok(f"{month:02d}/{year}")


@_order_guard
def validate_cvv(candidate: str) -> FieldResult:
    digits = re.sub(r"\D+", "", candidate or "")
    if not 3 <= len(digits) <= 4:
        return FieldResult.fail(CVV_PROMPT)
    return FieldResult.ok(digits)


EXTRACTORS: Dict[FieldKind, Callable[[str], str]] = {
    FieldKind.NAME: extract_name,
    FieldKind.EMAIL: extract_email,
    FieldKind.ADDRESS: extract_address,
    FieldKind.PHONE: extract_phone,
    FieldKind.CARD_NAME: extract_card_name,
    FieldKind.CARD_NUMBER: extract_card_number,
    FieldKind.EXPIRY_DATE: extract_expiry_date,
    FieldKind.CVV: extract_cvv,
}

VALIDATORS: Dict[FieldKind, Callable[[str], FieldResult]] = {
    FieldKind.NAME: validate_name,
    FieldKind.EMAIL: validate_email,
    FieldKind.ADDRESS: validate_address,
    FieldKind.PHONE: validate_phone,
    FieldKind.CARD_NAME: validate_card_name,
    FieldKind.CARD_NUMBER: validate_card_number,
    FieldKind.EXPIRY_DATE: validate_expiry_date,
    FieldKind.CVV: validate_cvv,
}


def extract_and_validate(kind: FieldKind, transcript: str) -> FieldResult:
    """Run the extractor and validator for one field kind."""
    if contains_order_command(transcript):
        return FieldResult.fail(ORDER_GUARD_PROMPT)
    return VALIDATORS[kind](EXTRACTORS[kind](transcript))
