"""
OTP Delivery
============
Deliverer capability and transports for SMS and email.
"""

# Re-export all public APIs
from .base import (
    Deliverer,
    DeliveryError,
    OTPMessage,
    render_template,
    DEFAULT_SMS_TEMPLATE,
    DEFAULT_EMAIL_SUBJECT,
    DEFAULT_EMAIL_TEXT_TEMPLATE,
    DEFAULT_EMAIL_HTML_TEMPLATE,
)
from .sms_http import HttpSmsDeliverer, SmsGatewayConfig
from .email_http import HttpEmailDeliverer, EmailApiConfig
from .email_smtp import SmtpEmailDeliverer, SmtpConfig
from .console import ConsoleDeliverer
from .router import ChannelRouter

__all__ = [
    # Base
    "Deliverer",
    "DeliveryError",
    "OTPMessage",
    "render_template",
    "DEFAULT_SMS_TEMPLATE",
    "DEFAULT_EMAIL_SUBJECT",
    "DEFAULT_EMAIL_TEXT_TEMPLATE",
    "DEFAULT_EMAIL_HTML_TEMPLATE",
    # Transports
    "HttpSmsDeliverer",
    "SmsGatewayConfig",
    "HttpEmailDeliverer",
    "EmailApiConfig",
    "SmtpEmailDeliverer",
    "SmtpConfig",
    "ConsoleDeliverer",
    "ChannelRouter",
]
