"""
Phone-number normalisation (NANP E.164), customer-leg extraction and
display formatting.

Normalisation is deliberately strict: only +1XXXXXXXXXX, 1XXXXXXXXXX and
XXXXXXXXXX shapes (after stripping punctuation) are accepted. Anything else,
including every non-North-American number, fails rather than being guessed.
Display formatting uses the `phonenumbers` library.
"""

from __future__ import annotations

import re
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

from callbridge.models import CallDirection, CallEvent, NormalizedPhone

_DEFAULT_REGION = "US"
_STRIP_RE = re.compile(r"[^\d+]")
_TEN_DIGITS_RE = re.compile(r"^\d{10}$")


def normalize_phone(raw: object) -> Optional[NormalizedPhone]:
    """
    Normalise a raw phone string to its E.164 / last-10 / digits forms.

    Returns ``None`` when the input is not one of the three recognised
    shapes or the subscriber part is not exactly ten digits.
    """
    if not raw or not isinstance(raw, str):
        return None

    cleaned = _STRIP_RE.sub("", raw)

    if cleaned.startswith("+1"):
        e164 = cleaned
        last10 = cleaned[2:]
    elif cleaned.startswith("1") and len(cleaned) == 11:
        e164 = "+" + cleaned
        last10 = cleaned[1:]
    elif len(cleaned) == 10:
        e164 = "+1" + cleaned
        last10 = cleaned
    else:
        return None

    # Catches "+44…", stray inner "+" signs and over-long "+1" input
    if not _TEN_DIGITS_RE.match(last10):
        return None

    return NormalizedPhone(e164=e164, last10=last10, full_digits=e164[1:])


def extract_customer_number(event: CallEvent | dict | None) -> Optional[str]:
    """
    Return the customer-facing raw number of a call.

    Inbound calls come *from* the customer; outbound calls go *to* them.
    Accepts a parsed ``CallEvent`` or a raw provider dict.
    """
    if event is None:
        return None

    if isinstance(event, CallEvent):
        direction = event.direction.value
        from_number, to_number = event.from_number, event.to_number
    else:
        direction = str(event.get("direction") or "").lower()
        from_number = event.get("from_number")
        to_number = event.get("to_number")

    if direction == CallDirection.INBOUND.value:
        number = from_number
    elif direction == CallDirection.OUTBOUND.value:
        number = to_number
    else:
        return None

    return number or None


def are_equivalent(a: object, b: object) -> bool:
    """True when both inputs normalise to the same E.164 number."""
    norm_a = normalize_phone(a)
    norm_b = normalize_phone(b)
    if norm_a is None or norm_b is None:
        return False
    return norm_a.e164 == norm_b.e164


def format_for_display(e164: str) -> str:
    """Format an E.164 number as ``(NXX) NXX-XXXX``; input returned on failure."""
    try:
        parsed = phonenumbers.parse(e164, _DEFAULT_REGION)
        return phonenumbers.format_number(parsed, PhoneNumberFormat.NATIONAL)
    except NumberParseException:
        return e164
