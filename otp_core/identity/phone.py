"""
Phone Utilities
===============
Functions for phone number validation, normalization and masking.
"""

import re
from typing import Optional

_PUNCTUATION = re.compile(r"[\s().-]")
_E164_OTP = re.compile(r"^\+[1-9]\d{7,14}$")


def validate_e164(phone: str) -> bool:
    """
    Validate an E.164 number accepted for OTP delivery.

    Args:
        phone: Phone number

    Returns:
        True if "+" followed by 8-15 digits, the first non-zero
    """
    return bool(_E164_OTP.match(phone))


def normalize_phone(
    phone: Optional[str],
    default_calling_code: Optional[str] = None,
) -> Optional[str]:
    """
    Normalize a phone number to E.164 format.

    Rules:
    - Whitespace and ( ) . - are stripped
    - A leading "00" is treated as "+"
    - Without "+", the default calling code is prepended to the digits

    Args:
        phone: Raw phone number
        default_calling_code: Calling code without "+" (e.g., "227")

    Returns:
        E.164 formatted number, or None if it cannot be normalized
    """
    raw = str(phone or "").strip()
    if not raw:
        return None

    candidate = _PUNCTUATION.sub("", raw)

    if candidate.startswith("00"):
        candidate = f"+{candidate[2:]}"

    if not candidate.startswith("+"):
        calling_code = re.sub(r"\D", "", default_calling_code or "")
        digits = re.sub(r"\D", "", candidate)
        if not calling_code or not digits:
            return None
        candidate = f"+{calling_code}{digits}"

    if not validate_e164(candidate):
        return None
    return candidate


def mask_phone(phone: str) -> str:
    """Mask a phone number for display, keeping the last 4 digits."""
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return phone
    return f"+***{digits[-4:]}"
