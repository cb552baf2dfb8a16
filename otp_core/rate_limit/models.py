"""
Rate Limit Models
=================
Per-target issue quota record and decision result.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from otp_core.identity import Channel


@dataclass
class RateLimitDecision:
    """Result of a check-and-consume call."""
    allowed: bool
    retry_after_sec: int  # blocked: seconds until retry; allowed: resend hint


@dataclass
class RateLimitRecord:
    """
    Persisted sliding-window state for one (channel, target).

    ``sent_in_window`` only counts relative to ``window_started_at``; once the
    window has elapsed it is logically zero even if not yet reset.
    Instants are epoch milliseconds.
    """
    window_started_at: Optional[int] = None
    sent_in_window: int = 0
    blocked_until: Optional[int] = None
    last_sent_at: Optional[int] = None

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> "RateLimitRecord":
        data = data or {}
        return cls(
            window_started_at=data.get("windowStartedAt"),
            sent_in_window=int(data.get("sentInWindow") or 0),
            blocked_until=data.get("blockedUntil"),
            last_sent_at=data.get("lastSentAt"),
        )


def sanitize_target(target: str) -> str:
    """Lowercase and strip everything that is not a letter or digit."""
    return re.sub(r"[^a-z0-9]", "", target.lower())


def rate_limit_key(channel: Channel, target: str) -> str:
    """Document key for a (channel, target) pair, e.g. ``sms_22790123456``."""
    return f"{channel.value}_{sanitize_target(target)}"
