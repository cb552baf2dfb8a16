"""
Console Deliverer
=================
Development deliverer that logs a masked target and keeps messages in memory.

For development and testing only. The code itself is never logged.
"""

from typing import List, Optional

import structlog

from otp_core.identity import mask_target

from .base import Deliverer, OTPMessage

logger = structlog.get_logger(__name__)


class ConsoleDeliverer(Deliverer):
    """Records messages instead of sending them."""

    def __init__(self):
        self.outbox: List[OTPMessage] = []

    async def deliver(self, message: OTPMessage) -> None:
        self.outbox.append(message)
        logger.info(
            "OTP message captured",
            channel=message.channel.value,
            masked_target=mask_target(message.channel, message.target),
        )

    def last_code(self, target: Optional[str] = None) -> Optional[str]:
        """Most recent code, optionally for one target."""
        for message in reversed(self.outbox):
            if target is None or message.target == target:
                return message.code
        return None
