"""
Identity Provisioner
====================
Find-or-create of the authentication principal after a verified challenge.

Only a ``PrincipalMissing`` lookup leads to creation. Any other directory
failure, including a timeout, is surfaced as Internal; the challenge stays
verified because the code has legitimately been spent.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, TypeVar

import structlog

from otp_core.directory import (
    DirectoryError,
    IdentityDirectory,
    LookupFailed,
    Principal,
    PrincipalFound,
    PrincipalMissing,
)
from otp_core.errors import Internal
from otp_core.identity import Channel, mask_target

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProvisionResult:
    uid: str
    is_new_user: bool


class IdentityProvisioner:
    """Maps a verified (channel, target) to a directory principal."""

    def __init__(self, directory: IdentityDirectory, timeout: float = 15.0):
        self.directory = directory
        self.timeout = timeout

    async def get_or_create(self, channel: Channel, target: str) -> ProvisionResult:
        """
        Reuse the principal owning ``target`` or create one.

        For email, an existing unverified principal is promoted to verified:
        proving control of the inbox via OTP supersedes link verification.

        Raises:
            Internal: On any directory failure other than "not found"
        """
        masked = mask_target(channel, target)
        try:
            if channel is Channel.SMS:
                result = await self._provision_phone(target)
            elif channel is Channel.EMAIL:
                result = await self._provision_email(target)
            else:
                raise ValueError(f"Unsupported channel: {channel}")
        except (DirectoryError, asyncio.TimeoutError) as e:
            logger.error(
                "Identity provisioning failed",
                channel=channel.value,
                masked_target=masked,
                error=type(e).__name__,
            )
            raise Internal("Failed to provision user account.") from e

        logger.info(
            "Identity provisioned",
            channel=channel.value,
            masked_target=masked,
            uid=result.uid,
            is_new_user=result.is_new_user,
        )
        return result

    async def _provision_phone(self, phone_number: str) -> ProvisionResult:
        lookup = await self._bounded(self.directory.lookup_by_phone(phone_number))

        if isinstance(lookup, PrincipalFound):
            return ProvisionResult(uid=lookup.principal.uid, is_new_user=False)
        if isinstance(lookup, PrincipalMissing):
            created = await self._bounded(self.directory.create_principal(phone_number=phone_number))
            return ProvisionResult(uid=created.uid, is_new_user=True)
        raise self._lookup_error(lookup)

    async def _provision_email(self, email: str) -> ProvisionResult:
        lookup = await self._bounded(self.directory.lookup_by_email(email))

        if isinstance(lookup, PrincipalFound):
            principal: Principal = lookup.principal
            if not principal.email_verified:
                await self._bounded(self.directory.mark_email_verified(principal.uid))
            return ProvisionResult(uid=principal.uid, is_new_user=False)
        if isinstance(lookup, PrincipalMissing):
            created = await self._bounded(
                self.directory.create_principal(email=email, email_verified=True)
            )
            return ProvisionResult(uid=created.uid, is_new_user=True)
        raise self._lookup_error(lookup)

    @staticmethod
    def _lookup_error(lookup: LookupFailed) -> DirectoryError:
        if isinstance(lookup.cause, DirectoryError):
            return lookup.cause
        return DirectoryError(f"Lookup failed: {lookup.cause}")

    async def _bounded(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self.timeout)
