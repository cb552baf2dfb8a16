"""
HTTP SMS Deliverer
==================
Sends codes through a generic JSON SMS gateway.

Field names, auth header and sender are configurable so the same adapter
fits most bulk SMS HTTP APIs.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx
import structlog

from otp_core.config import env_float
from otp_core.identity import Channel, mask_target

from .base import (
    DEFAULT_SMS_TEMPLATE,
    Deliverer,
    DeliveryError,
    OTPMessage,
    auth_header_value,
    parse_extra_payload,
    render_template,
)

logger = structlog.get_logger(__name__)


@dataclass
class SmsGatewayConfig:
    """Configuration for the SMS gateway."""
    api_url: str
    api_token: str
    http_method: str = "POST"
    token_header: str = "Authorization"
    token_prefix: str = "Bearer"
    to_field: str = "to"
    message_field: str = "message"
    sender_field: str = "sender"
    sender: str = ""
    timeout: float = 15.0
    extra_payload: Dict[str, Any] = field(default_factory=dict)
    message_template: str = DEFAULT_SMS_TEMPLATE

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SmsGatewayConfig":
        env = os.environ if environ is None else environ
        return cls(
            api_url=env.get("OTP_SMS_API_URL", ""),
            api_token=env.get("OTP_SMS_API_TOKEN", ""),
            http_method=env.get("OTP_SMS_HTTP_METHOD", "POST").upper(),
            token_header=env.get("OTP_SMS_TOKEN_HEADER", "Authorization"),
            token_prefix=env.get("OTP_SMS_TOKEN_PREFIX", "Bearer"),
            to_field=env.get("OTP_SMS_TO_FIELD", "to"),
            message_field=env.get("OTP_SMS_MESSAGE_FIELD", "message"),
            sender_field=env.get("OTP_SMS_SENDER_FIELD", "sender"),
            sender=env.get("OTP_SMS_SENDER", ""),
            timeout=env_float(env, "OTP_SMS_TIMEOUT_SEC", 15.0),
            extra_payload=parse_extra_payload(
                env.get("OTP_SMS_EXTRA_PAYLOAD_JSON", ""), "OTP_SMS_EXTRA_PAYLOAD_JSON"
            ),
            message_template=env.get("OTP_SMS_MESSAGE_TEMPLATE") or DEFAULT_SMS_TEMPLATE,
        )


class HttpSmsDeliverer(Deliverer):
    """SMS delivery through an HTTP gateway."""

    def __init__(
        self,
        config: SmsGatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    def build_payload(self, message: OTPMessage) -> Dict[str, Any]:
        payload = {
            **self.config.extra_payload,
            self.config.to_field: message.target,
            self.config.message_field: render_template(self.config.message_template, message),
        }
        if self.config.sender:
            payload[self.config.sender_field] = self.config.sender
        return payload

    async def deliver(self, message: OTPMessage) -> None:
        """Send an SMS via the gateway."""
        if message.channel is not Channel.SMS:
            raise DeliveryError(f"HttpSmsDeliverer cannot send {message.channel.value}")
        if not self.config.api_url:
            raise DeliveryError("Missing OTP_SMS_API_URL")
        if not self.config.api_token:
            raise DeliveryError("Missing OTP_SMS_API_TOKEN")

        headers = {
            "Content-Type": "application/json",
            self.config.token_header: auth_header_value(
                self.config.api_token, self.config.token_prefix
            ),
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    self.config.http_method,
                    self.config.api_url,
                    headers=headers,
                    json=self.build_payload(message),
                )
        except httpx.HTTPError as e:
            logger.error(
                "OTP SMS transport error",
                masked_target=mask_target(Channel.SMS, message.target),
                error=type(e).__name__,
            )
            raise DeliveryError("OTP_SMS_PROVIDER_UNREACHABLE") from e

        if not response.is_success:
            logger.error(
                "OTP SMS send failed",
                masked_target=mask_target(Channel.SMS, message.target),
                status=response.status_code,
            )
            raise DeliveryError("OTP_SMS_PROVIDER_FAILED")
