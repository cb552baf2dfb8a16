"""
Identity Directory
==================
Capability interface and implementations for authentication principals.
"""

# Re-export all public APIs
from .models import (
    Principal,
    PrincipalFound,
    PrincipalMissing,
    LookupFailed,
    LookupResult,
)
from .exceptions import (
    DirectoryError,
    DirectoryUnavailableError,
    DirectoryTimeoutError,
    DirectoryAuthError,
)
from .base import IdentityDirectory
from .memory import InMemoryIdentityDirectory
from .http_client import HttpIdentityDirectory, PrincipalPayload

__all__ = [
    # Models
    "Principal",
    "PrincipalFound",
    "PrincipalMissing",
    "LookupFailed",
    "LookupResult",
    # Exceptions
    "DirectoryError",
    "DirectoryUnavailableError",
    "DirectoryTimeoutError",
    "DirectoryAuthError",
    # Directories
    "IdentityDirectory",
    "InMemoryIdentityDirectory",
    "HttpIdentityDirectory",
    "PrincipalPayload",
]
