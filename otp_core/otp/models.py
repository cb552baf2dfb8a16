"""
OTP Models
==========
Challenge record and status enum for the OTP state machine.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from otp_core.identity import Channel
from otp_core.timeutil import from_millis, to_millis


class ChallengeStatus(str, Enum):
    """Challenge lifecycle states. Everything but PENDING is terminal."""
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    LOCKED = "locked"
    SEND_FAILED = "send_failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ChallengeStatus.PENDING


@dataclass
class OTPChallenge:
    """Server-side record of one OTP issuance."""
    id: str
    channel: Channel
    target: Optional[str]
    code_hash: str
    salt: str
    status: ChallengeStatus
    attempts: int
    max_attempts: int
    expires_at: Optional[datetime]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at <= now

    def to_document(self) -> Dict[str, Any]:
        doc = {
            "challengeId": self.id,
            "channel": self.channel.value,
            "target": self.target,
            "codeHash": self.code_hash,
            "salt": self.salt,
            "status": self.status.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "expiresAt": to_millis(self.expires_at) if self.expires_at else None,
            "createdAt": to_millis(self.created_at) if self.created_at else None,
            "updatedAt": to_millis(self.updated_at) if self.updated_at else None,
        }
        if self.verified_at is not None:
            doc["verifiedAt"] = to_millis(self.verified_at)
        return doc

    @classmethod
    def from_document(
        cls,
        challenge_id: str,
        data: Dict[str, Any],
        default_max_attempts: int = 5,
    ) -> "OTPChallenge":
        return cls(
            id=challenge_id,
            channel=Channel(data.get("channel") or Channel.SMS.value),
            target=data.get("target"),
            code_hash=data.get("codeHash") or "",
            salt=data.get("salt") or "",
            status=ChallengeStatus(data.get("status") or ChallengeStatus.PENDING.value),
            attempts=int(data.get("attempts") or 0),
            max_attempts=int(data.get("maxAttempts") or default_max_attempts),
            expires_at=from_millis(data.get("expiresAt")),
            created_at=from_millis(data.get("createdAt")),
            updated_at=from_millis(data.get("updatedAt")),
            verified_at=from_millis(data.get("verifiedAt")),
        )


@dataclass(frozen=True)
class VerifiedChallenge:
    """Outcome of a successful verification, handed to provisioning."""
    challenge_id: str
    channel: Channel
    target: Optional[str]
