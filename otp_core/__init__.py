"""
OTP Core
========
Passwordless one-time-code authentication over SMS and email.

Usage:
    from otp_core import OTPAuthService, OTPSettings, InMemoryDocumentStore
"""

__version__ = "0.1.0"

# Re-export all public APIs
from .config import OTPSettings
from .errors import (
    OTPError,
    InvalidArgument,
    NotFound,
    FailedPrecondition,
    DeadlineExceeded,
    ResourceExhausted,
    Internal,
)
from .identity import Channel, IdentityResolver, ResolvedIdentity
from .store import (
    DocumentStore,
    InMemoryDocumentStore,
    SQLAlchemyDocumentStore,
    RedisDocumentStore,
)
from .delivery import (
    Deliverer,
    DeliveryError,
    OTPMessage,
    ChannelRouter,
    ConsoleDeliverer,
)
from .directory import IdentityDirectory, InMemoryIdentityDirectory, HttpIdentityDirectory
from .tokens import TokenIssuer, HMACTokenIssuer
from .service import OTPAuthService
from .logs import setup_logging

__all__ = [
    "__version__",
    # Config
    "OTPSettings",
    # Errors
    "OTPError",
    "InvalidArgument",
    "NotFound",
    "FailedPrecondition",
    "DeadlineExceeded",
    "ResourceExhausted",
    "Internal",
    # Identity
    "Channel",
    "IdentityResolver",
    "ResolvedIdentity",
    # Stores
    "DocumentStore",
    "InMemoryDocumentStore",
    "SQLAlchemyDocumentStore",
    "RedisDocumentStore",
    # Delivery
    "Deliverer",
    "DeliveryError",
    "OTPMessage",
    "ChannelRouter",
    "ConsoleDeliverer",
    # Directory
    "IdentityDirectory",
    "InMemoryIdentityDirectory",
    "HttpIdentityDirectory",
    # Tokens
    "TokenIssuer",
    "HMACTokenIssuer",
    # Service
    "OTPAuthService",
    "setup_logging",
]
