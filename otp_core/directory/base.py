"""
Identity Directory Interface
============================
Capability wrapping the external store of authentication principals.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import LookupResult, Principal


class IdentityDirectory(ABC):
    """
    Abstract identity directory.

    Lookups never raise: a missing principal is ``PrincipalMissing`` and any
    other failure is ``LookupFailed``. Mutations raise DirectoryError.
    """

    @abstractmethod
    async def lookup_by_phone(self, phone_number: str) -> LookupResult:
        pass

    @abstractmethod
    async def lookup_by_email(self, email: str) -> LookupResult:
        pass

    @abstractmethod
    async def create_principal(
        self,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
        email_verified: bool = False,
    ) -> Principal:
        pass

    @abstractmethod
    async def mark_email_verified(self, uid: str) -> Principal:
        pass
