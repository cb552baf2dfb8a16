"""
HTTP Email Deliverer
====================
Sends codes through a JSON transactional email API.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx
import structlog

from otp_core.config import env_float
from otp_core.identity import Channel, mask_email, normalize_email

from .base import (
    DEFAULT_EMAIL_HTML_TEMPLATE,
    DEFAULT_EMAIL_SUBJECT,
    Deliverer,
    DeliveryError,
    OTPMessage,
    auth_header_value,
    parse_extra_payload,
    render_template,
)

logger = structlog.get_logger(__name__)


@dataclass
class EmailApiConfig:
    """Configuration for the email API."""
    api_url: str
    from_address: str
    api_token: str = ""
    http_method: str = "POST"
    token_header: str = "Authorization"
    token_prefix: str = "Bearer"
    to_field: str = "to"
    from_field: str = "from"
    subject_field: str = "subject"
    message_field: str = "html"
    timeout: float = 15.0
    extra_payload: Dict[str, Any] = field(default_factory=dict)
    subject: str = DEFAULT_EMAIL_SUBJECT
    html_template: str = DEFAULT_EMAIL_HTML_TEMPLATE

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EmailApiConfig":
        env = os.environ if environ is None else environ
        return cls(
            api_url=env.get("OTP_EMAIL_API_URL", ""),
            from_address=env.get("OTP_EMAIL_FROM", ""),
            api_token=env.get("OTP_EMAIL_API_TOKEN", ""),
            http_method=env.get("OTP_EMAIL_HTTP_METHOD", "POST").upper(),
            token_header=env.get("OTP_EMAIL_TOKEN_HEADER", "Authorization"),
            token_prefix=env.get("OTP_EMAIL_TOKEN_PREFIX", "Bearer"),
            to_field=env.get("OTP_EMAIL_TO_FIELD", "to"),
            from_field=env.get("OTP_EMAIL_FROM_FIELD", "from"),
            subject_field=env.get("OTP_EMAIL_SUBJECT_FIELD", "subject"),
            message_field=env.get("OTP_EMAIL_MESSAGE_FIELD", "html"),
            timeout=env_float(env, "OTP_EMAIL_TIMEOUT_SEC", 15.0),
            extra_payload=parse_extra_payload(
                env.get("OTP_EMAIL_EXTRA_PAYLOAD_JSON", ""), "OTP_EMAIL_EXTRA_PAYLOAD_JSON"
            ),
            subject=env.get("OTP_EMAIL_SUBJECT_TEMPLATE") or DEFAULT_EMAIL_SUBJECT,
            html_template=env.get("OTP_EMAIL_MESSAGE_TEMPLATE") or DEFAULT_EMAIL_HTML_TEMPLATE,
        )


class HttpEmailDeliverer(Deliverer):
    """Email delivery through an HTTP API."""

    def __init__(
        self,
        config: EmailApiConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    async def deliver(self, message: OTPMessage) -> None:
        if message.channel is not Channel.EMAIL:
            raise DeliveryError(f"HttpEmailDeliverer cannot send {message.channel.value}")
        if not self.config.api_url:
            raise DeliveryError("Missing OTP_EMAIL_API_URL")
        if not normalize_email(self.config.from_address):
            raise DeliveryError("Invalid OTP_EMAIL_FROM")
        recipient = normalize_email(message.target)
        if not recipient:
            raise DeliveryError("Invalid recipient address")

        payload = {
            **self.config.extra_payload,
            self.config.to_field: recipient,
            self.config.from_field: self.config.from_address,
            self.config.subject_field: self.config.subject,
            self.config.message_field: render_template(self.config.html_template, message),
        }
        headers = {"Content-Type": "application/json"}
        if self.config.api_token:
            headers[self.config.token_header] = auth_header_value(
                self.config.api_token, self.config.token_prefix
            )

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    self.config.http_method,
                    self.config.api_url,
                    headers=headers,
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(
                "OTP email API transport error",
                masked_target=mask_email(recipient),
                error=type(e).__name__,
            )
            raise DeliveryError("OTP_EMAIL_API_UNREACHABLE") from e

        if not response.is_success:
            logger.error(
                "OTP email API send failed",
                masked_target=mask_email(recipient),
                status=response.status_code,
            )
            raise DeliveryError("OTP_EMAIL_API_PROVIDER_FAILED")
