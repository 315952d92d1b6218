"""Input sanitization primitives.

Every function here takes untrusted input and returns a cleaned value or
``None``; none of them raise for malformed input.  Callers branch on
``None`` to decide whether a field is present and usable.

Escaping and trimming are deliberately separate: ``sanitize_text`` and
``sanitize_object`` only trim and truncate, while ``escape_html`` must be
called explicitly wherever text is rendered as markup.
"""

import math
import re
from datetime import date, datetime

MAX_SAFE_INTEGER = 2**53 - 1

_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_HTML_RE = re.compile(r"[&<>\"'/]")

# Leading numeric prefix, the way browsers parse "12.5kg" -> 12.5
_NUMBER_PREFIX_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F-\x9F]")


def escape_html(text: str) -> str:
    """Replace ``& < > " ' /`` with their HTML entities."""
    if not isinstance(text, str):
        return ""
    return _HTML_RE.sub(lambda m: _HTML_ESCAPES[m.group(0)], text)


def sanitize_text(text, max_length: int = 1000) -> str:
    """Trim surrounding whitespace and cut to ``max_length`` characters."""
    if not isinstance(text, str):
        return ""
    return text.strip()[:max_length]


def sanitize_number(value, min_value: float = 0, max_value: float = MAX_SAFE_INTEGER):
    """Parse ``value`` as a number within ``[min_value, max_value]``.

    Returns an int when the parsed value is integral, a float otherwise,
    and ``None`` when it cannot be parsed or falls out of range.
    """
    if isinstance(value, bool) or value is None:
        return None
    try:
        if isinstance(value, (int, float)):
            num = float(value)
        elif isinstance(value, str):
            match = _NUMBER_PREFIX_RE.match(value)
            if not match:
                return None
            num = float(match.group(0))
        else:
            return None
    except OverflowError:
        return None

    if not math.isfinite(num) or num < min_value or num > max_value:
        return None
    return int(num) if num.is_integer() else num


def sanitize_date(value):
    """Return the ISO ``YYYY-MM-DD`` form of a date-like value, or ``None``."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return None

    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw).date().isoformat()
    except ValueError:
        pass
    try:
        return date.fromisoformat(raw[:10]).isoformat()
    except ValueError:
        return None


def sanitize_time(value):
    """Return ``value`` when it is a valid ``H:MM`` / ``HH:MM`` clock time."""
    if not isinstance(value, str):
        return None
    return value if _TIME_RE.match(value) else None


def remove_special_chars(text: str) -> str:
    """Strip C0 and C1 control characters."""
    if not isinstance(text, str):
        return ""
    return _CONTROL_CHARS_RE.sub("", text)


def is_valid_email(email) -> bool:
    """Shallow ``something@domain.tld`` check; not RFC 5322."""
    if not isinstance(email, str):
        return False
    return bool(_EMAIL_RE.match(email))


def sanitize_object(record: dict, max_length: int = 1000) -> dict:
    """Apply ``sanitize_text(value, max_length)`` to every string of a dict, recursing into nested dicts.

    Lists and non-string scalars are copied through untouched.
    """
    cleaned = {}
    for key, value in record.items():
        if isinstance(value, str):
            cleaned[key] = sanitize_text(value, max_length)
        elif isinstance(value, dict):
            cleaned[key] = sanitize_object(value, max_length)
        else:
            cleaned[key] = value
    return cleaned
