"""
Identity Directory Models
=========================
Principal record and the closed lookup result type.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass
class Principal:
    """Authentication identity owned by the external directory."""
    uid: str
    phone_number: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False


@dataclass(frozen=True)
class PrincipalFound:
    principal: Principal


@dataclass(frozen=True)
class PrincipalMissing:
    pass


@dataclass(frozen=True)
class LookupFailed:
    cause: Exception


LookupResult = Union[PrincipalFound, PrincipalMissing, LookupFailed]
