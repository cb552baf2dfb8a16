"""
SMTP Email Deliverer
====================
Sends codes as multipart text/HTML email over SMTP using aiosmtplib.

A fallback host, when configured, is tried after the primary host fails.
"""

import email.message
import email.policy
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

import aiosmtplib
import structlog

from otp_core.config import env_float, env_int
from otp_core.identity import Channel, mask_email, normalize_email

from .base import (
    DEFAULT_EMAIL_HTML_TEMPLATE,
    DEFAULT_EMAIL_SUBJECT,
    DEFAULT_EMAIL_TEXT_TEMPLATE,
    Deliverer,
    DeliveryError,
    OTPMessage,
    render_template,
)

logger = structlog.get_logger(__name__)


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() != "false"


@dataclass
class SmtpConfig:
    """Configuration for SMTP delivery."""
    host: str
    from_address: str
    fallback_host: str = ""
    port: int = 465
    use_tls: bool = True  # implicit TLS; set False and start_tls=True for 587
    start_tls: Optional[bool] = None
    validate_certs: bool = True
    username: str = ""
    password: str = ""
    require_auth: bool = True
    timeout: float = 20.0
    subject: str = DEFAULT_EMAIL_SUBJECT
    text_template: str = DEFAULT_EMAIL_TEXT_TEMPLATE
    html_template: str = DEFAULT_EMAIL_HTML_TEMPLATE

    @property
    def hosts(self) -> List[str]:
        """Primary then fallback host, without blanks or duplicates."""
        hosts: List[str] = []
        for host in (self.host, self.fallback_host):
            if host and host not in hosts:
                hosts.append(host)
        return hosts

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SmtpConfig":
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("OTP_EMAIL_SMTP_HOST", ""),
            from_address=env.get("OTP_EMAIL_FROM", ""),
            fallback_host=env.get("OTP_EMAIL_SMTP_FALLBACK_HOST", ""),
            port=env_int(env, "OTP_EMAIL_SMTP_PORT", 465),
            use_tls=_env_flag(env, "OTP_EMAIL_SMTP_SECURE", True),
            validate_certs=_env_flag(env, "OTP_EMAIL_SMTP_REJECT_UNAUTHORIZED", True),
            username=env.get("OTP_EMAIL_SMTP_USER", ""),
            password=env.get("OTP_EMAIL_SMTP_PASSWORD", ""),
            require_auth=_env_flag(env, "OTP_EMAIL_SMTP_REQUIRE_AUTH", True),
            timeout=env_float(env, "OTP_EMAIL_SMTP_TIMEOUT_SEC", 20.0),
            subject=env.get("OTP_EMAIL_SUBJECT_TEMPLATE") or DEFAULT_EMAIL_SUBJECT,
            text_template=env.get("OTP_EMAIL_TEXT_TEMPLATE") or DEFAULT_EMAIL_TEXT_TEMPLATE,
            html_template=env.get("OTP_EMAIL_MESSAGE_TEMPLATE") or DEFAULT_EMAIL_HTML_TEMPLATE,
        )


class SmtpEmailDeliverer(Deliverer):
    """Email delivery over SMTP with host fallback."""

    def __init__(self, config: SmtpConfig):
        self.config = config

    def _check_config(self) -> None:
        if not self.config.hosts:
            raise DeliveryError("Missing OTP_EMAIL_SMTP_HOST")
        if not normalize_email(self.config.from_address):
            raise DeliveryError("Invalid OTP_EMAIL_FROM")
        if self.config.require_auth and not (self.config.username and self.config.password):
            raise DeliveryError("Missing SMTP credentials")

    def build_message(self, message: OTPMessage, recipient: str) -> email.message.EmailMessage:
        mime = email.message.EmailMessage(policy=email.policy.default)
        mime["From"] = self.config.from_address
        mime["To"] = recipient
        mime["Subject"] = self.config.subject
        mime.set_content(render_template(self.config.text_template, message), subtype="plain", charset="utf-8")
        mime.add_alternative(render_template(self.config.html_template, message), subtype="html", charset="utf-8")
        return mime

    async def deliver(self, message: OTPMessage) -> None:
        if message.channel is not Channel.EMAIL:
            raise DeliveryError(f"SmtpEmailDeliverer cannot send {message.channel.value}")
        self._check_config()
        recipient = normalize_email(message.target)
        if not recipient:
            raise DeliveryError("Invalid recipient address")

        mime = self.build_message(message, recipient)
        last_error: Optional[Exception] = None

        for host in self.config.hosts:
            try:
                await aiosmtplib.send(
                    mime,
                    hostname=host,
                    port=self.config.port,
                    username=self.config.username if self.config.require_auth else None,
                    password=self.config.password if self.config.require_auth else None,
                    use_tls=self.config.use_tls,
                    start_tls=False if self.config.use_tls else self.config.start_tls,
                    validate_certs=self.config.validate_certs,
                    timeout=self.config.timeout,
                )
                return
            except (aiosmtplib.SMTPException, OSError) as e:
                last_error = e
                logger.warning(
                    "OTP SMTP send failed on host",
                    host=host,
                    masked_target=mask_email(recipient),
                    error=type(e).__name__,
                )

        raise DeliveryError("OTP_SMTP_SEND_FAILED") from last_error
