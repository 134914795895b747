"""
shared/utils/text.py
Input sanitizing helpers applied to free-text fields before they are stored.
"""

import re
from typing import Optional

_TAG_RE = re.compile(r"<[^>]*>")
_NON_DIGIT_RE = re.compile(r"\D")
PHONE_RE = re.compile(r"^[\d\s\-\+\(\)]+$")


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Strip HTML tags and surrounding whitespace. None stays None."""
    if value is None:
        return None
    return _TAG_RE.sub("", value).strip()


def phone_digit_count(phone: Optional[str]) -> int:
    if not phone:
        return 0
    return len(_NON_DIGIT_RE.sub("", phone))


def is_valid_phone(phone: Optional[str], min_digits: int = 10) -> bool:
    return bool(phone) and bool(PHONE_RE.match(phone)) and phone_digit_count(phone) >= min_digits
