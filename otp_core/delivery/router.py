"""
Channel Router
==============
Dispatches each message to the deliverer configured for its channel.
"""

from typing import Dict

from otp_core.identity import Channel

from .base import Deliverer, DeliveryError, OTPMessage


class ChannelRouter(Deliverer):
    def __init__(self, deliverers: Dict[Channel, Deliverer]):
        self.deliverers = dict(deliverers)

    async def deliver(self, message: OTPMessage) -> None:
        deliverer = self.deliverers.get(message.channel)
        if deliverer is None:
            raise DeliveryError(f"No deliverer configured for {message.channel.value}")
        await deliverer.deliver(message)
