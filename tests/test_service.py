"""
OTP Auth Service Tests
======================
End-to-end tests for the issue and verify flows.
"""

import asyncio

import pytest
from prometheus_client import generate_latest
from structlog.testing import capture_logs

from otp_core.config import OTPSettings
from otp_core.delivery import DeliveryError
from otp_core.errors import (
    DeadlineExceeded,
    FailedPrecondition,
    Internal,
    InvalidArgument,
    NotFound,
    ResourceExhausted,
)
from otp_core.metrics import OTP_REGISTRY
from otp_core.otp import CHALLENGES_COLLECTION, ChallengeStatus
from otp_core.profiles import USERS_COLLECTION
from otp_core.service import OTPAuthService
from otp_core.store import StoreError


class FailingDeliverer:
    async def deliver(self, message):
        raise DeliveryError("OTP_SMS_PROVIDER_FAILED")


class SlowDeliverer:
    async def deliver(self, message):
        await asyncio.sleep(5)


class CrashingDeliverer:
    async def deliver(self, message):
        raise RuntimeError("gateway client bug")


class BrokenProfiles:
    async def ensure(self, uid, phone_number=None, email=None):
        raise StoreError("write failed")


class TestRequest:
    """Tests for request_otp_code."""

    @pytest.mark.asyncio
    async def test_local_phone_number(self, service, deliverer, store):
        """A local number is normalized and a pending challenge stored."""
        response = await service.request_otp_code({"phoneNumber": "90123456"})

        assert response.channel == "sms"
        assert response.masked_target == "+***3456"
        assert response.expires_in_sec == 300
        assert response.resend_after_sec == 30
        assert deliverer.outbox[0].target == "+22790123456"

        doc = store.dump(CHALLENGES_COLLECTION)[response.challenge_id]
        assert doc["status"] == "pending"
        assert doc["target"] == "+22790123456"

    @pytest.mark.asyncio
    async def test_email_request(self, service):
        """An email request resolves to the email channel."""
        response = await service.request_otp_code({"email": "Alice@Example.com"})

        assert response.channel == "email"
        assert response.masked_target == "al***@example.com"

    @pytest.mark.asyncio
    async def test_invalid_input(self, service, store):
        """Unusable input fails before anything is persisted."""
        with pytest.raises(InvalidArgument):
            await service.request_otp_code({"email": "bad"})
        with pytest.raises(InvalidArgument):
            await service.request_otp_code({"channel": "fax", "phoneNumber": "90123456"})
        with pytest.raises(InvalidArgument):
            await service.request_otp_code({"phoneNumber": 90123456})

        assert store.dump(CHALLENGES_COLLECTION) == {}

    @pytest.mark.asyncio
    async def test_rate_limited(self, service):
        """The sixth request in a window is rejected with the retry time."""
        for _ in range(5):
            await service.request_otp_code({"phoneNumber": "90123456"})

        with pytest.raises(ResourceExhausted, match="Retry in 1800s") as excinfo:
            await service.request_otp_code({"phoneNumber": "90123456"})
        assert excinfo.value.retry_after_sec == 1800

    @pytest.mark.asyncio
    async def test_delivery_failure_marks_send_failed(
        self, settings, store, directory, token_issuer, clock
    ):
        """A failed send marks the challenge and returns Internal."""
        service = OTPAuthService(settings, store, FailingDeliverer(), directory, token_issuer, clock)

        with capture_logs() as logs, pytest.raises(Internal, match="Failed to send OTP code."):
            await service.request_otp_code({"phoneNumber": "90123456"})

        [doc] = store.dump(CHALLENGES_COLLECTION).values()
        assert doc["status"] == ChallengeStatus.SEND_FAILED.value

        failure = next(entry for entry in logs if entry["event"] == "OTP delivery failed")
        assert failure["masked_target"] == "+***3456"
        assert "+22790123456" not in str(logs)

    @pytest.mark.asyncio
    async def test_delivery_timeout_marks_send_failed(self, store, directory, token_issuer, clock):
        """A deliverer that exceeds the timeout fails closed."""
        settings = OTPSettings(default_calling_code="227", delivery_timeout_seconds=0.05)
        service = OTPAuthService(settings, store, SlowDeliverer(), directory, token_issuer, clock)

        with pytest.raises(Internal, match="Failed to send OTP code."):
            await service.request_otp_code({"phoneNumber": "90123456"})

        [doc] = store.dump(CHALLENGES_COLLECTION).values()
        assert doc["status"] == ChallengeStatus.SEND_FAILED.value

    @pytest.mark.asyncio
    async def test_unexpected_deliverer_error_marks_send_failed(
        self, settings, store, directory, token_issuer, clock
    ):
        """Errors outside DeliveryError are still reported as Internal."""
        service = OTPAuthService(settings, store, CrashingDeliverer(), directory, token_issuer, clock)

        with pytest.raises(Internal, match="Failed to send OTP code."):
            await service.request_otp_code({"phoneNumber": "90123456"})

        [doc] = store.dump(CHALLENGES_COLLECTION).values()
        assert doc["status"] == ChallengeStatus.SEND_FAILED.value

    @pytest.mark.asyncio
    async def test_code_never_logged(self, service, deliverer):
        """Neither code nor salt appears in log output."""
        with capture_logs() as logs:
            response = await service.request_otp_code({"phoneNumber": "90123456"})
            code = deliverer.last_code()
            await service.verify_otp_code({"challengeId": response.challenge_id, "code": code})

        rendered = str(logs)
        assert code not in rendered
        assert "+22790123456" not in rendered


class TestVerify:
    """Tests for verify_otp_code."""

    async def issue(self, service, deliverer, **payload):
        response = await service.request_otp_code(payload or {"phoneNumber": "90123456"})
        return response.challenge_id, deliverer.last_code()

    @pytest.mark.asyncio
    async def test_end_to_end_new_user(self, service, deliverer, store, directory, token_issuer):
        """A first login creates the principal and profile and returns a token."""
        challenge_id, code = await self.issue(service, deliverer)

        result = await service.verify_otp_code({"challengeId": challenge_id, "code": code})

        assert result.is_new_user is True
        assert result.channel == "sms"
        assert directory.principals[result.uid].phone_number == "+22790123456"
        assert store.dump(USERS_COLLECTION)[result.uid]["phoneNumber"] == "+22790123456"

        payload = token_issuer.verify(result.custom_token)
        assert payload["uid"] == result.uid
        assert payload["claims"] == {"authMethod": "otp_sms"}

    @pytest.mark.asyncio
    async def test_returning_user(self, service, deliverer):
        """A second login reuses the uid."""
        challenge_id, code = await self.issue(service, deliverer)
        first = await service.verify_otp_code({"challengeId": challenge_id, "code": code})

        challenge_id, code = await self.issue(service, deliverer)
        second = await service.verify_otp_code({"challengeId": challenge_id, "code": code})

        assert second.uid == first.uid
        assert second.is_new_user is False

    @pytest.mark.asyncio
    async def test_email_login(self, service, deliverer, token_issuer):
        """Email logins carry the otp_email auth method."""
        challenge_id, code = await self.issue(service, deliverer, email="alice@example.com")

        result = await service.verify_otp_code({"challengeId": challenge_id, "code": code})

        assert result.channel == "email"
        assert token_issuer.verify(result.custom_token)["claims"] == {"authMethod": "otp_email"}

    @pytest.mark.asyncio
    async def test_code_whitespace_ignored(self, service, deliverer):
        """Whitespace inside the code and around the id is ignored."""
        challenge_id, code = await self.issue(service, deliverer)
        spaced = f" {code[:3]} {code[3:]} "

        result = await service.verify_otp_code({"challengeId": f"  {challenge_id} ", "code": spaced})

        assert result.channel == "sms"

    @pytest.mark.asyncio
    async def test_missing_fields(self, service):
        """Empty id or code is rejected."""
        with pytest.raises(InvalidArgument, match="challengeId and code are required."):
            await service.verify_otp_code({"challengeId": " ", "code": "123456"})
        with pytest.raises(InvalidArgument):
            await service.verify_otp_code({"challengeId": "otp_1_x"})

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, service):
        """Unknown ids fail with NotFound."""
        with pytest.raises(NotFound):
            await service.verify_otp_code({"challengeId": "otp_1_x", "code": "123456"})

    @pytest.mark.asyncio
    async def test_wrong_code(self, service, deliverer):
        """A wrong code fails with InvalidArgument."""
        challenge_id, code = await self.issue(service, deliverer)
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(InvalidArgument, match="Invalid OTP code."):
            await service.verify_otp_code({"challengeId": challenge_id, "code": wrong})

    @pytest.mark.asyncio
    async def test_expired(self, service, deliverer, clock):
        """Verifying after expiry fails with DeadlineExceeded."""
        challenge_id, code = await self.issue(service, deliverer)
        clock.advance(seconds=301)

        with pytest.raises(DeadlineExceeded):
            await service.verify_otp_code({"challengeId": challenge_id, "code": code})

    @pytest.mark.asyncio
    async def test_replay_rejected(self, service, deliverer):
        """A verified challenge cannot be used again."""
        challenge_id, code = await self.issue(service, deliverer)
        await service.verify_otp_code({"challengeId": challenge_id, "code": code})

        with pytest.raises(FailedPrecondition):
            await service.verify_otp_code({"challengeId": challenge_id, "code": code})

    @pytest.mark.asyncio
    async def test_missing_target(self, service, deliverer, store):
        """A verified challenge without a target fails with FailedPrecondition."""
        challenge_id, code = await self.issue(service, deliverer)
        await store.set(CHALLENGES_COLLECTION, challenge_id, {"target": None}, merge=True)

        with pytest.raises(FailedPrecondition):
            await service.verify_otp_code({"challengeId": challenge_id, "code": code})

    @pytest.mark.asyncio
    async def test_profile_failure_keeps_challenge_verified(self, service, deliverer, store):
        """Post-match failures surface Internal without reverting the challenge."""
        challenge_id, code = await self.issue(service, deliverer)
        service.profiles = BrokenProfiles()

        with pytest.raises(Internal, match="Failed to sync user profile."):
            await service.verify_otp_code({"challengeId": challenge_id, "code": code})

        doc = store.dump(CHALLENGES_COLLECTION)[challenge_id]
        assert doc["status"] == ChallengeStatus.VERIFIED.value

    @pytest.mark.asyncio
    async def test_corrupt_challenge_is_internal(self, service, deliverer, store):
        """A stored challenge with an unknown status surfaces as Internal."""
        challenge_id, code = await self.issue(service, deliverer)
        await store.set(CHALLENGES_COLLECTION, challenge_id, {"status": "archived"}, merge=True)

        with pytest.raises(Internal, match="Failed to verify OTP code."):
            await service.verify_otp_code({"challengeId": challenge_id, "code": code})


class TestMetrics:
    """Tests for outcome counters."""

    @pytest.mark.asyncio
    async def test_counters_record_outcomes(self, service, deliverer):
        """Successes and failures are counted by channel and outcome."""
        before = OTP_REGISTRY.get_sample_value(
            "otp_requests_total", {"channel": "sms", "outcome": "ok"}
        ) or 0

        await service.request_otp_code({"phoneNumber": "90123456"})
        with pytest.raises(NotFound):
            await service.verify_otp_code({"challengeId": "otp_1_x", "code": "123456"})

        assert OTP_REGISTRY.get_sample_value(
            "otp_requests_total", {"channel": "sms", "outcome": "ok"}
        ) == before + 1
        assert OTP_REGISTRY.get_sample_value(
            "otp_verifications_total", {"channel": "unknown", "outcome": "not-found"}
        ) >= 1
        assert b"otp_requests_total" in generate_latest(OTP_REGISTRY)
