"""
Token Issuer
============
Signs the custom session token handed out after a successful verification.
"""

import base64
import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from otp_core.timeutil import Clock, utc_now


class TokenIssueError(Exception):
    """Raised when a token cannot be issued."""
    pass


class TokenIssuer(ABC):
    """Boundary capability producing a credential for a uid."""

    @abstractmethod
    async def create_custom_token(self, uid: str, claims: Optional[Dict[str, Any]] = None) -> str:
        pass


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


class HMACTokenIssuer(TokenIssuer):
    """
    HMAC-SHA256 signed tokens: ``<base64url payload>.<base64url signature>``.

    Payload fields: uid, claims, iat and exp (epoch seconds).
    """

    def __init__(self, secret: str, ttl_seconds: int = 3600, clock: Clock = utc_now):
        if not secret:
            raise ValueError("secret must not be empty")
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _sign(self, payload_b64: str) -> str:
        digest = hmac.new(
            self.secret.encode(),
            payload_b64.encode(),
            hashlib.sha256,
        ).digest()
        return _b64encode(digest)

    async def create_custom_token(self, uid: str, claims: Optional[Dict[str, Any]] = None) -> str:
        """
        Create a signed token for a uid.

        Args:
            uid: Principal uid
            claims: Extra claims (e.g., {"authMethod": "otp_sms"})

        Returns:
            Signed token
        """
        if not uid:
            raise TokenIssueError("uid is required")

        issued_at = int(self.clock().timestamp())
        payload = {
            "uid": uid,
            "claims": claims or {},
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
        }
        payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        payload_b64 = _b64encode(payload_json.encode())
        return f"{payload_b64}.{self._sign(payload_b64)}"

    def verify(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Verify a token issued by this issuer.

        Returns:
            Payload if the signature is valid and the token is unexpired,
            None otherwise
        """
        parts = token.split(".")
        if len(parts) != 2:
            return None

        payload_b64, signature = parts
        if not hmac.compare_digest(signature, self._sign(payload_b64)):
            return None

        try:
            payload = json.loads(_b64decode(payload_b64).decode())
        except ValueError:
            return None

        if int(self.clock().timestamp()) >= int(payload.get("exp", 0)):
            return None
        return payload
