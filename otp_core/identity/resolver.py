"""
Identity Resolver
=================
Turns caller input into a canonical (channel, target) pair.
"""

from typing import Optional, Union

from otp_core.errors import InvalidArgument

from .email import mask_email, normalize_email
from .models import Channel, ResolvedIdentity
from .phone import mask_phone, normalize_phone


def parse_channel(value: Union[str, Channel, None]) -> Optional[Channel]:
    """
    Parse an explicit channel.

    Returns:
        Channel, or None when no channel was supplied

    Raises:
        InvalidArgument: If the value is not a known channel
    """
    if value is None or value == "":
        return None
    if isinstance(value, Channel):
        return value
    try:
        return Channel(str(value).strip().lower())
    except ValueError:
        raise InvalidArgument("channel must be 'sms' or 'email'.") from None


def mask_target(channel: Channel, target: str) -> str:
    """Masked display form of a target for its channel."""
    if channel is Channel.SMS:
        return mask_phone(target)
    if channel is Channel.EMAIL:
        return mask_email(target)
    raise ValueError(f"Unsupported channel: {channel}")


class IdentityResolver:
    """Resolves phone/email input into a ResolvedIdentity."""

    def __init__(self, default_calling_code: Optional[str] = None):
        self.default_calling_code = default_calling_code

    def resolve(
        self,
        channel: Union[str, Channel, None] = None,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
    ) -> ResolvedIdentity:
        """
        Resolve caller input.

        An explicit channel wins. Otherwise a valid email selects the email
        channel, and the phone number is tried last.

        Raises:
            InvalidArgument: If no valid phone or email can be derived
        """
        explicit = parse_channel(channel)

        if explicit is Channel.SMS:
            return self._resolve_phone(phone_number)
        if explicit is Channel.EMAIL:
            return self._resolve_email(email)

        normalized_email = normalize_email(email)
        if normalized_email:
            return ResolvedIdentity(
                channel=Channel.EMAIL,
                target=normalized_email,
                masked_target=mask_email(normalized_email),
            )

        if phone_number:
            return self._resolve_phone(phone_number)

        raise InvalidArgument("A valid phoneNumber or email is required.")

    def _resolve_phone(self, phone_number: Optional[str]) -> ResolvedIdentity:
        phone = normalize_phone(phone_number, self.default_calling_code)
        if not phone:
            raise InvalidArgument("Invalid phoneNumber format.")
        return ResolvedIdentity(
            channel=Channel.SMS,
            target=phone,
            masked_target=mask_phone(phone),
        )

    def _resolve_email(self, email: Optional[str]) -> ResolvedIdentity:
        normalized = normalize_email(email)
        if not normalized:
            raise InvalidArgument("Invalid email format.")
        return ResolvedIdentity(
            channel=Channel.EMAIL,
            target=normalized,
            masked_target=mask_email(normalized),
        )
