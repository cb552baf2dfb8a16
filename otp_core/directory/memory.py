"""
In-Memory Identity Directory
============================
Dict-backed directory for development and testing.
"""

import secrets
from typing import Dict, Optional

import structlog

from .base import IdentityDirectory
from .exceptions import DirectoryError
from .models import LookupResult, Principal, PrincipalFound, PrincipalMissing

logger = structlog.get_logger(__name__)


class InMemoryIdentityDirectory(IdentityDirectory):
    """Keeps principals in process memory; phone numbers and emails are unique."""

    def __init__(self):
        self.principals: Dict[str, Principal] = {}

    def _find(self, attribute: str, value: str) -> LookupResult:
        for principal in self.principals.values():
            if getattr(principal, attribute) == value:
                return PrincipalFound(principal)
        return PrincipalMissing()

    async def lookup_by_phone(self, phone_number: str) -> LookupResult:
        return self._find("phone_number", phone_number)

    async def lookup_by_email(self, email: str) -> LookupResult:
        return self._find("email", email)

    async def create_principal(
        self,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
        email_verified: bool = False,
    ) -> Principal:
        if phone_number and isinstance(self._find("phone_number", phone_number), PrincipalFound):
            raise DirectoryError("Phone number already exists", status_code=409)
        if email and isinstance(self._find("email", email), PrincipalFound):
            raise DirectoryError("Email already exists", status_code=409)

        principal = Principal(
            uid=secrets.token_urlsafe(21),
            phone_number=phone_number,
            email=email,
            email_verified=email_verified,
        )
        self.principals[principal.uid] = principal
        logger.info("Principal created", uid=principal.uid)
        return principal

    async def mark_email_verified(self, uid: str) -> Principal:
        principal = self.principals.get(uid)
        if principal is None:
            raise DirectoryError("Principal not found", status_code=404)
        principal.email_verified = True
        return principal
