"""
Delivery Base
=============
Deliverer capability and message rendering shared by all channels.
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict

import structlog

from otp_core.identity import Channel

logger = structlog.get_logger(__name__)

DEFAULT_SMS_TEMPLATE = "Your verification code is {code}. It expires in {minutes} min."
DEFAULT_EMAIL_SUBJECT = "Your verification code"
DEFAULT_EMAIL_TEXT_TEMPLATE = "Your verification code is {code}. It expires in {minutes} minute(s)."
DEFAULT_EMAIL_HTML_TEMPLATE = (
    "<p>Your verification code is <strong>{code}</strong>.</p>"
    "<p>It expires in {minutes} minute(s).</p>"
)


class DeliveryError(Exception):
    """Raised when a code could not be handed to the transport."""
    pass


@dataclass(frozen=True)
class OTPMessage:
    """A code to deliver. ``repr`` hides the code so it never reaches logs."""
    channel: Channel
    target: str
    code: str
    expires_in_sec: int

    @property
    def minutes(self) -> int:
        return max(1, math.ceil(self.expires_in_sec / 60))

    def __repr__(self) -> str:
        return f"OTPMessage(channel={self.channel.value!r}, code=<redacted>)"


def render_template(template: str, message: OTPMessage) -> str:
    """Fill ``{code}`` and ``{minutes}``; other braces are left untouched."""
    return template.replace("{code}", message.code).replace("{minutes}", str(message.minutes))


def parse_extra_payload(raw: str, source: str) -> Dict[str, Any]:
    """Parse a JSON object of extra request fields; anything else is ignored."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Invalid extra payload JSON, ignoring", source=source)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def auth_header_value(token: str, prefix: str) -> str:
    return f"{prefix} {token}" if prefix else token


class Deliverer(ABC):
    """Sends an OTP message to its target."""

    @abstractmethod
    async def deliver(self, message: OTPMessage) -> None:
        """
        Deliver a code.

        Raises:
            DeliveryError: If the transport rejected or failed the send
        """
        pass
