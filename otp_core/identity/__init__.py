"""
Identity Resolution
===================
Channel selection, phone/email normalization and target masking.
"""

# Re-export all public APIs
from .models import Channel, ResolvedIdentity
from .phone import validate_e164, normalize_phone, mask_phone
from .email import normalize_email, mask_email
from .resolver import IdentityResolver, parse_channel, mask_target

__all__ = [
    # Models
    "Channel",
    "ResolvedIdentity",
    # Phone
    "validate_e164",
    "normalize_phone",
    "mask_phone",
    # Email
    "normalize_email",
    "mask_email",
    # Resolver
    "IdentityResolver",
    "parse_channel",
    "mask_target",
]
