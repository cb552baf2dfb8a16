"""
Challenge Store
===============
Persistence and state machine for OTP challenges.

    pending -> verified | expired | locked | send_failed

Every state other than ``pending`` is terminal. Verification runs as one
atomic transaction, so at most one caller can ever move a challenge to
``verified``; a concurrent caller observes the new status and fails with
FailedPrecondition.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

import structlog

from otp_core.errors import (
    DeadlineExceeded,
    FailedPrecondition,
    InvalidArgument,
    NotFound,
    ResourceExhausted,
)
from otp_core.identity import Channel
from otp_core.store import DocumentStore, StoreError, Transaction
from otp_core.timeutil import Clock, to_millis, utc_now

from .hashing import verify_code
from .models import ChallengeStatus, OTPChallenge, VerifiedChallenge

logger = structlog.get_logger(__name__)

CHALLENGES_COLLECTION = "otpChallenges"


class VerifyOutcome(str, Enum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    NOT_PENDING = "not_pending"
    EXPIRED = "expired"
    LOCKED = "locked"
    INVALID_CODE = "invalid_code"


class ChallengeStore:
    """Creates challenges and drives their state transitions."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock = utc_now,
        default_max_attempts: int = 5,
        collection: str = CHALLENGES_COLLECTION,
    ):
        self.store = store
        self.clock = clock
        self.default_max_attempts = default_max_attempts
        self.collection = collection

    async def create(
        self,
        challenge_id: str,
        channel: Channel,
        target: str,
        code_hash: str,
        salt: str,
        expires_at: datetime,
        max_attempts: int,
    ) -> OTPChallenge:
        """
        Insert a new pending challenge.

        Args:
            challenge_id: Opaque id the code hash was bound to
            channel: Delivery channel
            target: Normalized phone or email
            code_hash: Stored digest of the code
            salt: Salt used for the digest
            expires_at: Instant after which verification fails
            max_attempts: Verify attempts allowed before lockout

        Returns:
            The persisted challenge
        """
        now = self.clock()
        challenge = OTPChallenge(
            id=challenge_id,
            channel=channel,
            target=target,
            code_hash=code_hash,
            salt=salt,
            status=ChallengeStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        await self.store.set(self.collection, challenge_id, challenge.to_document())
        logger.info(
            "OTP challenge created",
            challenge_id=challenge_id,
            channel=channel.value,
            expires_at=expires_at.isoformat(),
        )
        return challenge

    async def get(self, challenge_id: str) -> Optional[OTPChallenge]:
        data = await self.store.get(self.collection, challenge_id)
        if data is None:
            return None
        return OTPChallenge.from_document(challenge_id, data, self.default_max_attempts)

    async def mark_send_failed(self, challenge_id: str) -> bool:
        """
        Best-effort ``pending -> send_failed`` transition after a failed delivery.

        Runs as a transaction, so a challenge that reached a terminal state
        in the meantime is left alone. Store errors are logged rather than
        raised.

        Returns:
            True if the status was written
        """
        async def _mark(tx: Transaction) -> bool:
            data = await tx.get(self.collection, challenge_id)
            status = (data or {}).get("status") or ChallengeStatus.PENDING.value
            if data is None or status != ChallengeStatus.PENDING.value:
                return False
            self._transition(
                tx,
                challenge_id,
                {"status": ChallengeStatus.SEND_FAILED.value},
                to_millis(self.clock()),
            )
            return True

        try:
            return await self.store.run_transaction(_mark)
        except StoreError as e:
            logger.error(
                "Failed to mark challenge send_failed",
                challenge_id=challenge_id,
                error=type(e).__name__,
            )
            return False

    async def verify(self, challenge_id: str, code: str) -> VerifiedChallenge:
        """
        Check a code and transition the challenge atomically.

        Order of checks: existence, pending status, expiry, attempt budget,
        then the constant-time code comparison. Failure transitions
        (expired, locked, attempt count) are committed before raising.

        Raises:
            NotFound: Unknown challenge
            FailedPrecondition: Challenge is no longer pending
            DeadlineExceeded: Challenge expired
            ResourceExhausted: Attempts exhausted (challenge locked)
            InvalidArgument: Wrong code, attempts remain
        """
        outcome, challenge = await self.store.run_transaction(
            lambda tx: self._verify_in_transaction(tx, challenge_id, code)
        )

        if outcome is VerifyOutcome.VERIFIED:
            logger.info(
                "OTP challenge verified",
                challenge_id=challenge_id,
                channel=challenge.channel.value,
                attempts=challenge.attempts,
            )
            return VerifiedChallenge(
                challenge_id=challenge_id,
                channel=challenge.channel,
                target=challenge.target,
            )

        logger.warning(
            "OTP verification rejected",
            challenge_id=challenge_id,
            outcome=outcome.value,
            attempts=challenge.attempts if challenge else None,
        )
        if outcome is VerifyOutcome.NOT_FOUND:
            raise NotFound("OTP challenge not found.")
        if outcome is VerifyOutcome.NOT_PENDING:
            raise FailedPrecondition("OTP challenge is no longer pending.")
        if outcome is VerifyOutcome.EXPIRED:
            raise DeadlineExceeded("OTP code expired.")
        if outcome is VerifyOutcome.LOCKED:
            raise ResourceExhausted("Too many attempts.")
        raise InvalidArgument("Invalid OTP code.")

    async def _verify_in_transaction(
        self,
        tx: Transaction,
        challenge_id: str,
        code: str,
    ) -> Tuple[VerifyOutcome, Optional[OTPChallenge]]:
        now = self.clock()
        now_ms = to_millis(now)

        data = await tx.get(self.collection, challenge_id)
        if data is None:
            return VerifyOutcome.NOT_FOUND, None

        challenge = OTPChallenge.from_document(challenge_id, data, self.default_max_attempts)
        if challenge.status is not ChallengeStatus.PENDING:
            return VerifyOutcome.NOT_PENDING, challenge

        if challenge.is_expired(now):
            self._transition(tx, challenge_id, {"status": ChallengeStatus.EXPIRED.value}, now_ms)
            return VerifyOutcome.EXPIRED, challenge

        if challenge.attempts >= challenge.max_attempts:
            self._transition(tx, challenge_id, {"status": ChallengeStatus.LOCKED.value}, now_ms)
            return VerifyOutcome.LOCKED, challenge

        challenge.attempts += 1

        if not verify_code(challenge_id, code, challenge.salt, challenge.code_hash):
            locked = challenge.attempts >= challenge.max_attempts
            status = ChallengeStatus.LOCKED if locked else ChallengeStatus.PENDING
            self._transition(
                tx,
                challenge_id,
                {"attempts": challenge.attempts, "status": status.value},
                now_ms,
            )
            return (VerifyOutcome.LOCKED if locked else VerifyOutcome.INVALID_CODE), challenge

        challenge.status = ChallengeStatus.VERIFIED
        challenge.verified_at = now
        self._transition(
            tx,
            challenge_id,
            {
                "attempts": challenge.attempts,
                "status": ChallengeStatus.VERIFIED.value,
                "verifiedAt": now_ms,
            },
            now_ms,
        )
        return VerifyOutcome.VERIFIED, challenge

    def _transition(self, tx: Transaction, challenge_id: str, fields: dict, now_ms: int) -> None:
        tx.set(self.collection, challenge_id, {**fields, "updatedAt": now_ms}, merge=True)
