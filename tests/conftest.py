"""
Shared test fixtures for otp-core.
"""

from datetime import datetime, timedelta, timezone

import pytest

from otp_core.config import OTPSettings
from otp_core.delivery import ConsoleDeliverer
from otp_core.directory import InMemoryIdentityDirectory
from otp_core.service import OTPAuthService
from otp_core.store import InMemoryDocumentStore
from otp_core.tokens import HMACTokenIssuer


class FakeClock:
    """Controllable clock; call it to read the current instant."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def deliverer():
    return ConsoleDeliverer()


@pytest.fixture
def directory():
    return InMemoryIdentityDirectory()


@pytest.fixture
def token_issuer(clock):
    return HMACTokenIssuer("test-secret", clock=clock)


@pytest.fixture
def settings():
    return OTPSettings(default_calling_code="227")


@pytest.fixture
def service(settings, store, deliverer, directory, token_issuer, clock):
    return OTPAuthService(
        settings=settings,
        store=store,
        deliverer=deliverer,
        directory=directory,
        token_issuer=token_issuer,
        clock=clock,
    )
