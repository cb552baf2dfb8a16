"""
OTP Metrics
===========
Prometheus counters for code issuance and verification outcomes.

Outcome label is ``ok`` on success, otherwise the OTPError ``kind``.

Usage:
    from prometheus_client import generate_latest
    from otp_core.metrics import OTP_REGISTRY

    body = generate_latest(OTP_REGISTRY)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter

from otp_core.errors import OTPError

OUTCOME_OK = "ok"

# ============================================================================
# Prometheus Metrics Definitions
# ============================================================================

# Custom registry so embedding apps control exposure
OTP_REGISTRY = CollectorRegistry()

OTP_REQUESTS_TOTAL = Counter(
    name="otp_requests_total",
    documentation="Total OTP issue requests",
    labelnames=["channel", "outcome"],
    registry=OTP_REGISTRY,
)

OTP_VERIFICATIONS_TOTAL = Counter(
    name="otp_verifications_total",
    documentation="Total OTP verification attempts",
    labelnames=["channel", "outcome"],
    registry=OTP_REGISTRY,
)


def outcome_for(error: Optional[OTPError] = None) -> str:
    return OUTCOME_OK if error is None else error.kind


def record_request(channel: str, error: Optional[OTPError] = None) -> None:
    """Count one issue request; ``channel`` is ``unknown`` if unresolved."""
    OTP_REQUESTS_TOTAL.labels(channel=channel, outcome=outcome_for(error)).inc()


def record_verification(channel: str, error: Optional[OTPError] = None) -> None:
    OTP_VERIFICATIONS_TOTAL.labels(channel=channel, outcome=outcome_for(error)).inc()
