"""
OTP Error Taxonomy
==================
Exceptions raised by the OTP issue and verify flows.

Every error carries a stable ``kind`` (used by the HTTP layer and metrics)
and a ``message`` that is safe to show to end users. Messages never contain
codes, salts or unmasked targets.
"""

from typing import Optional


class OTPError(Exception):
    """Base exception for all OTP flow errors."""

    kind = "internal"
    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidArgument(OTPError):
    """Malformed input, wrong code, or unresolvable identity."""

    kind = "invalid-argument"
    http_status = 400


class NotFound(OTPError):
    """Unknown challenge."""

    kind = "not-found"
    http_status = 404


class FailedPrecondition(OTPError):
    """Challenge is not pending, or lacks a target for its channel."""

    kind = "failed-precondition"
    http_status = 412


class DeadlineExceeded(OTPError):
    """Challenge has expired."""

    kind = "deadline-exceeded"
    http_status = 410


class ResourceExhausted(OTPError):
    """Rate limited or locked out after too many attempts."""

    kind = "resource-exhausted"
    http_status = 429

    def __init__(self, message: str, retry_after_sec: Optional[int] = None):
        super().__init__(message)
        self.retry_after_sec = retry_after_sec


class Internal(OTPError):
    """Delivery, directory, profile or store failure."""

    kind = "internal"
    http_status = 500
