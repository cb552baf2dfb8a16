"""
Email Utilities
===============
Email address normalization and masking.
"""

import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize an email address.

    Args:
        email: Raw email address

    Returns:
        Trimmed, lowercased address, or None if it is not local@domain.tld
    """
    candidate = str(email or "").strip().lower()
    if not candidate or not EMAIL_PATTERN.match(candidate):
        return None
    return candidate


def mask_email(email: str) -> str:
    """Mask an email for display: first 2 local characters, then ***@domain."""
    normalized = email.strip().lower()
    at_index = normalized.find("@")
    if at_index < 2:
        return "***"
    return f"{normalized[:2]}***{normalized[at_index:]}"
