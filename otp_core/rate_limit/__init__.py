"""
Rate Limiting
=============
Sliding-window-plus-lockout quota for OTP issuance.
"""

# Re-export all public APIs
from .models import RateLimitDecision, RateLimitRecord, rate_limit_key, sanitize_target
from .limiter import OTPRateLimiter, RATE_LIMITS_COLLECTION

__all__ = [
    # Models
    "RateLimitDecision",
    "RateLimitRecord",
    "rate_limit_key",
    "sanitize_target",
    # Limiter
    "OTPRateLimiter",
    "RATE_LIMITS_COLLECTION",
]
