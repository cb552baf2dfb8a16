"""
Identity Models
===============
Channel enum and resolved identity for OTP targets.
"""

from dataclasses import dataclass
from enum import Enum


class Channel(str, Enum):
    """OTP delivery channels."""
    SMS = "sms"
    EMAIL = "email"


@dataclass(frozen=True)
class ResolvedIdentity:
    """Canonical (channel, target) pair derived from caller input."""
    channel: Channel
    target: str
    masked_target: str
