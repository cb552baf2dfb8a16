"""
OTP Auth Service
================
Issue and verify flows for passwordless one-time-code login.

    request_otp_code: resolve -> rate limit -> persist challenge -> deliver
    verify_otp_code:  verify challenge -> provision principal -> sync profile -> token

Usage:
    service = OTPAuthService(
        settings=OTPSettings.from_env(),
        store=InMemoryDocumentStore(),
        deliverer=ConsoleDeliverer(),
        directory=InMemoryIdentityDirectory(),
        token_issuer=HMACTokenIssuer(secret),
    )
    issued = await service.request_otp_code({"phoneNumber": "+22790123456"})
    session = await service.verify_otp_code(
        {"challengeId": issued.challenge_id, "code": "123456"}
    )
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from otp_core.config import OTPSettings
from otp_core.delivery import Deliverer, OTPMessage
from otp_core.directory import IdentityDirectory
from otp_core.errors import (
    FailedPrecondition,
    Internal,
    InvalidArgument,
    OTPError,
    ResourceExhausted,
)
from otp_core.identity import Channel, IdentityResolver, ResolvedIdentity
from otp_core.metrics import record_request, record_verification
from otp_core.otp import ChallengeStore, generate_challenge_id, generate_code, hash_code
from otp_core.profiles import ProfileSynchronizer
from otp_core.provisioning import IdentityProvisioner
from otp_core.rate_limit import OTPRateLimiter
from otp_core.schemas import (
    RequestOtpInput,
    RequestOtpResponse,
    VerifyOtpInput,
    VerifyOtpResponse,
)
from otp_core.store import DocumentStore, StoreError
from otp_core.timeutil import Clock, utc_now
from otp_core.tokens import TokenIssueError, TokenIssuer

logger = structlog.get_logger(__name__)

UNKNOWN_CHANNEL = "unknown"


def _parse(model: type, data: Union[BaseModel, Dict[str, Any]]) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidArgument("Malformed request payload.") from e


class OTPAuthService:
    """Wires the OTP components behind the two public operations."""

    def __init__(
        self,
        settings: OTPSettings,
        store: DocumentStore,
        deliverer: Deliverer,
        directory: IdentityDirectory,
        token_issuer: TokenIssuer,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.store = store
        self.deliverer = deliverer
        self.token_issuer = token_issuer
        self.clock = clock

        self.resolver = IdentityResolver(settings.default_calling_code)
        self.rate_limiter = OTPRateLimiter(
            store,
            window_seconds=settings.rate_window_seconds,
            max_per_window=settings.max_per_window,
            lock_minutes=settings.lock_minutes,
            resend_seconds=settings.resend_seconds,
            clock=clock,
        )
        self.challenges = ChallengeStore(
            store,
            clock=clock,
            default_max_attempts=settings.max_attempts,
        )
        self.provisioner = IdentityProvisioner(
            directory,
            timeout=settings.directory_timeout_seconds,
        )
        self.profiles = ProfileSynchronizer(store, clock=clock)

    # =========================================================================
    # Issue
    # =========================================================================

    async def request_otp_code(
        self,
        data: Union[RequestOtpInput, Dict[str, Any]],
    ) -> RequestOtpResponse:
        """
        Issue a code to a phone number or email.

        Args:
            data: ``{channel?, phoneNumber?, email?}``

        Returns:
            RequestOtpResponse with the challenge id and masked target

        Raises:
            InvalidArgument: Unresolvable or malformed identity
            ResourceExhausted: Issue quota exceeded for the target
            Internal: Delivery or store failure
        """
        channel_label = UNKNOWN_CHANNEL
        try:
            request = _parse(RequestOtpInput, data)
            identity = self.resolver.resolve(
                channel=request.channel,
                phone_number=request.phone_number,
                email=request.email,
            )
            channel_label = identity.channel.value
            response = await self._issue(identity)
        except OTPError as e:
            record_request(channel_label, e)
            raise
        record_request(channel_label)
        return response

    async def _issue(self, identity: ResolvedIdentity) -> RequestOtpResponse:
        try:
            decision = await self.rate_limiter.check_and_consume(identity.channel, identity.target)
        except StoreError as e:
            logger.error("Rate limit check failed", channel=identity.channel.value, error=type(e).__name__)
            raise Internal("Failed to send OTP code.") from e

        if not decision.allowed:
            wait = decision.retry_after_sec
            raise ResourceExhausted(f"Too many OTP requests. Retry in {wait}s.", retry_after_sec=wait)

        challenge_id = generate_challenge_id()
        code = generate_code(self.settings.code_length)
        salt, code_hash = hash_code(challenge_id, code)
        expires_at = self.clock() + timedelta(seconds=self.settings.expiry_seconds)

        try:
            await self.challenges.create(
                challenge_id=challenge_id,
                channel=identity.channel,
                target=identity.target,
                code_hash=code_hash,
                salt=salt,
                expires_at=expires_at,
                max_attempts=self.settings.max_attempts,
            )
        except StoreError as e:
            logger.error("Failed to persist OTP challenge", channel=identity.channel.value, error=type(e).__name__)
            raise Internal("Failed to send OTP code.") from e

        message = OTPMessage(
            channel=identity.channel,
            target=identity.target,
            code=code,
            expires_in_sec=self.settings.expiry_seconds,
        )
        try:
            await asyncio.wait_for(
                self.deliverer.deliver(message),
                timeout=self.settings.delivery_timeout_seconds,
            )
        except Exception as e:
            # Any deliverer failure, timeouts included, fails closed
            logger.error(
                "OTP delivery failed",
                challenge_id=challenge_id,
                channel=identity.channel.value,
                masked_target=identity.masked_target,
                error=type(e).__name__,
            )
            await self.challenges.mark_send_failed(challenge_id)
            raise Internal("Failed to send OTP code.") from e

        logger.info(
            "OTP code sent",
            challenge_id=challenge_id,
            channel=identity.channel.value,
            masked_target=identity.masked_target,
        )
        return RequestOtpResponse(
            challenge_id=challenge_id,
            channel=identity.channel.value,
            masked_target=identity.masked_target,
            expires_in_sec=self.settings.expiry_seconds,
            resend_after_sec=self.settings.resend_seconds,
        )

    # =========================================================================
    # Verify
    # =========================================================================

    async def verify_otp_code(
        self,
        data: Union[VerifyOtpInput, Dict[str, Any]],
    ) -> VerifyOtpResponse:
        """
        Verify a code and exchange it for a custom token.

        Args:
            data: ``{challengeId, code}``; whitespace in the code is ignored

        Returns:
            VerifyOtpResponse with the token, uid and whether the user is new

        Raises:
            InvalidArgument: Missing fields or wrong code
            NotFound: Unknown challenge
            FailedPrecondition: Challenge not pending, or has no target
            DeadlineExceeded: Challenge expired
            ResourceExhausted: Attempts exhausted
            Internal: Provisioning, profile, token or store failure
        """
        channel_label = UNKNOWN_CHANNEL
        try:
            request = _parse(VerifyOtpInput, data)
            challenge_id = (request.challenge_id or "").strip()
            code = "".join((request.code or "").split())
            if not challenge_id or not code:
                raise InvalidArgument("challengeId and code are required.")

            try:
                verified = await self.challenges.verify(challenge_id, code)
            except (StoreError, ValueError) as e:
                # ValueError: stored challenge has an unknown channel or status
                logger.error("OTP verification store failure", challenge_id=challenge_id, error=type(e).__name__)
                raise Internal("Failed to verify OTP code.") from e

            channel_label = verified.channel.value
            response = await self._complete_login(verified.channel, verified.target, challenge_id)
        except OTPError as e:
            record_verification(channel_label, e)
            raise
        record_verification(channel_label)
        return response

    async def _complete_login(
        self,
        channel: Channel,
        target: Optional[str],
        challenge_id: str,
    ) -> VerifyOtpResponse:
        if not target:
            raise FailedPrecondition(f"Verified challenge has no {channel.value} target.")

        provisioned = await self.provisioner.get_or_create(channel, target)

        try:
            if channel is Channel.SMS:
                await self.profiles.ensure(provisioned.uid, phone_number=target)
            else:
                await self.profiles.ensure(provisioned.uid, email=target)
        except StoreError as e:
            logger.error(
                "Profile sync failed",
                challenge_id=challenge_id,
                uid=provisioned.uid,
                error=type(e).__name__,
            )
            raise Internal("Failed to sync user profile.") from e

        try:
            token = await self.token_issuer.create_custom_token(
                provisioned.uid,
                {"authMethod": f"otp_{channel.value}"},
            )
        except TokenIssueError as e:
            logger.error("Token issue failed", uid=provisioned.uid, error=type(e).__name__)
            raise Internal("Failed to create session token.") from e

        logger.info(
            "OTP login completed",
            challenge_id=challenge_id,
            channel=channel.value,
            uid=provisioned.uid,
            is_new_user=provisioned.is_new_user,
        )
        return VerifyOtpResponse(
            custom_token=token,
            uid=provisioned.uid,
            is_new_user=provisioned.is_new_user,
            channel=channel.value,
        )
