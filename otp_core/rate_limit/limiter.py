"""
OTP Rate Limiter
================
Sliding window with lockout, per (channel, target), on a DocumentStore.

Each call is one atomic transaction: concurrent requests for the same
target cannot both consume the last slot of a window.
"""

import math

import structlog

from otp_core.identity import Channel, mask_target
from otp_core.store import DocumentStore, Transaction
from otp_core.timeutil import Clock, to_millis, utc_now

from .models import RateLimitDecision, RateLimitRecord, rate_limit_key

logger = structlog.get_logger(__name__)

RATE_LIMITS_COLLECTION = "otpRateLimits"


class OTPRateLimiter:
    """
    Issue-quota limiter.

    Up to ``max_per_window`` codes may be issued per window. The request that
    would exceed it blocks the target for ``lock_minutes``. Once a block has
    expired, the next request starts a fresh window immediately.
    """

    def __init__(
        self,
        store: DocumentStore,
        window_seconds: int = 600,
        max_per_window: int = 5,
        lock_minutes: int = 30,
        resend_seconds: int = 30,
        clock: Clock = utc_now,
        collection: str = RATE_LIMITS_COLLECTION,
    ):
        self.store = store
        self.window_seconds = window_seconds
        self.max_per_window = max_per_window
        self.lock_minutes = lock_minutes
        self.resend_seconds = resend_seconds
        self.clock = clock
        self.collection = collection

    async def check_and_consume(self, channel: Channel, target: str) -> RateLimitDecision:
        """
        Check the quota for a target and consume one slot if allowed.

        Args:
            channel: Delivery channel
            target: Normalized phone or email

        Returns:
            RateLimitDecision; ``retry_after_sec`` is the wait when blocked,
            or the client-side resend hint when allowed
        """
        key = rate_limit_key(channel, target)

        async def _consume(tx: Transaction) -> RateLimitDecision:
            return await self._check_in_transaction(tx, key, target)

        decision = await self.store.run_transaction(_consume)
        if not decision.allowed:
            logger.warning(
                "OTP issue rate limited",
                channel=channel.value,
                masked_target=mask_target(channel, target),
                retry_after=decision.retry_after_sec,
            )
        return decision

    async def _check_in_transaction(
        self,
        tx: Transaction,
        key: str,
        target: str,
    ) -> RateLimitDecision:
        now_ms = to_millis(self.clock())
        record = RateLimitRecord.from_document(await tx.get(self.collection, key))

        if record.blocked_until and record.blocked_until > now_ms:
            return RateLimitDecision(
                allowed=False,
                retry_after_sec=math.ceil((record.blocked_until - now_ms) / 1000),
            )

        window_expired = (
            not record.window_started_at
            or now_ms - record.window_started_at > self.window_seconds * 1000
        )
        sent_in_window = 0 if window_expired else record.sent_in_window
        next_count = sent_in_window + 1

        if next_count > self.max_per_window:
            tx.set(
                self.collection,
                key,
                {
                    "target": target,
                    "blockedUntil": now_ms + self.lock_minutes * 60 * 1000,
                    "updatedAt": now_ms,
                },
                merge=True,
            )
            return RateLimitDecision(allowed=False, retry_after_sec=self.lock_minutes * 60)

        tx.set(
            self.collection,
            key,
            {
                "target": target,
                "windowStartedAt": now_ms if window_expired else record.window_started_at,
                "sentInWindow": next_count,
                "lastSentAt": now_ms,
                "updatedAt": now_ms,
            },
            merge=True,
        )
        return RateLimitDecision(allowed=True, retry_after_sec=self.resend_seconds)
