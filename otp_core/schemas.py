"""
OTP Schemas
===========
Pydantic models for the request/verify payloads (camelCase on the wire).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestOtpInput(CamelModel):
    """Issue request. ``channel`` is optional; it is inferred from the fields."""
    channel: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None


class RequestOtpResponse(CamelModel):
    challenge_id: str
    channel: str
    masked_target: str
    expires_in_sec: int
    resend_after_sec: int


class VerifyOtpInput(CamelModel):
    challenge_id: Optional[str] = None
    code: Optional[str] = None


class VerifyOtpResponse(CamelModel):
    custom_token: str
    uid: str
    is_new_user: bool
    channel: str
