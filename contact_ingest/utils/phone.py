"""
Phone number helpers used by the optional row validation checks.
"""

import re
from typing import Any


def phone_digits(value: Any) -> str:
    """Return only the digits of a phone value ('' for empty input)."""
    if value is None:
        return ""
    return re.sub(r'\D', '', str(value))


def phone_lookup_key(value: Any) -> str:
    """
    Key used to compare phone numbers for duplicates.

    Formatting is ignored so "01 02 03 04 05" and "0102030405" collide.
    Values without any digit fall back to their trimmed text.
    """
    digits = phone_digits(value)
    if digits:
        return digits
    return str(value or "").strip()


def validate_phone(value: Any, *, min_digits: int = 7, max_digits: int = 15) -> bool:
    """
    Validate if a value is a plausible phone number.

    Args:
        value: Value to validate
        min_digits: Minimum number of digits required
        max_digits: Maximum number of digits allowed

    Returns:
        True if valid phone number, False otherwise
    """
    if value is None or value == "":
        return False

    text = str(value).strip()
    if not text:
        return False

    # Letters left once an extension is removed mean free text, not a number
    without_extension = re.sub(r'(?i)\s*(?:x|ext\.?|extension)\s*\d+$', '', text)
    if re.search(r'[A-Za-z]', without_extension):
        return False

    digits = phone_digits(text)
    return min_digits <= len(digits) <= max_digits
