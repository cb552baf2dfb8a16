"""
OTP Configuration
=================
Settings for code issuance, verification and rate limiting.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    """Read an integer environment variable, failing loudly on garbage."""
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class OTPSettings:
    """Configuration for the OTP issue and verify flows."""
    code_length: int = 6
    expiry_seconds: int = 300  # 5 minutes
    resend_seconds: int = 30
    max_attempts: int = 5
    rate_window_seconds: int = 600  # 10 minutes
    max_per_window: int = 5
    lock_minutes: int = 30
    default_calling_code: Optional[str] = None  # e.g. "227", without "+"
    delivery_timeout_seconds: float = 20.0
    directory_timeout_seconds: float = 15.0

    def __post_init__(self) -> None:
        for name in (
            "code_length",
            "expiry_seconds",
            "max_attempts",
            "rate_window_seconds",
            "max_per_window",
            "lock_minutes",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.resend_seconds < 0:
            raise ValueError("resend_seconds must not be negative")
        if self.default_calling_code is not None:
            digits = "".join(ch for ch in self.default_calling_code if ch.isdigit())
            self.default_calling_code = digits or None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OTPSettings":
        """
        Load settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            OTPSettings with defaults for unset variables
        """
        env = os.environ if environ is None else environ
        return cls(
            code_length=env_int(env, "OTP_CODE_LENGTH", 6),
            expiry_seconds=env_int(env, "OTP_EXPIRES_IN_SEC", 300),
            resend_seconds=env_int(env, "OTP_RESEND_SECONDS", 30),
            max_attempts=env_int(env, "OTP_MAX_ATTEMPTS", 5),
            rate_window_seconds=env_int(env, "OTP_RATE_WINDOW_SECONDS", 600),
            max_per_window=env_int(env, "OTP_MAX_PER_WINDOW", 5),
            lock_minutes=env_int(env, "OTP_LOCK_MINUTES", 30),
            default_calling_code=env.get("OTP_DEFAULT_COUNTRY_CODE") or None,
            delivery_timeout_seconds=env_float(env, "OTP_DELIVERY_TIMEOUT_SEC", 20.0),
            directory_timeout_seconds=env_float(env, "OTP_DIRECTORY_TIMEOUT_SEC", 15.0),
        )
