"""
Profile Synchronizer
====================
Ensures a minimal user profile exists for a provisioned principal.

Identity fields are only ever backfilled: a non-empty phone number or email
already on the profile is never overwritten.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from otp_core.store import DocumentStore, Transaction
from otp_core.timeutil import Clock, from_millis, to_millis, utc_now

logger = structlog.get_logger(__name__)

USERS_COLLECTION = "users"


@dataclass
class UserProfile:
    """Minimal user profile document."""
    uid: str
    phone_number: Optional[str] = None
    email: Optional[str] = None
    role: str = "customer"
    status: str = "active"
    is_merchant: bool = False
    free_usage_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            uid=data["uid"],
            phone_number=data.get("phoneNumber") or None,
            email=data.get("email") or None,
            role=data.get("role", "customer"),
            status=data.get("status", "active"),
            is_merchant=bool(data.get("isMerchant", False)),
            free_usage_count=int(data.get("freeUsageCount") or 0),
            created_at=from_millis(data.get("createdAt")),
            updated_at=from_millis(data.get("updatedAt")),
        )


def build_profile_defaults(
    uid: str,
    now_ms: int,
    phone_number: Optional[str] = None,
    email: Optional[str] = None,
) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "uid": uid,
        "role": "customer",
        "status": "active",
        "isMerchant": False,
        "freeUsageCount": 0,
        "createdAt": now_ms,
        "updatedAt": now_ms,
    }
    if phone_number:
        doc["phoneNumber"] = phone_number
    if email:
        doc["email"] = email
    return doc


class ProfileSynchronizer:
    """Creates or backfills profiles in the users collection."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock = utc_now,
        collection: str = USERS_COLLECTION,
    ):
        self.store = store
        self.clock = clock
        self.collection = collection

    async def get(self, uid: str) -> Optional[UserProfile]:
        data = await self.store.get(self.collection, uid)
        return UserProfile.from_document(data) if data else None

    async def ensure(
        self,
        uid: str,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
    ) -> bool:
        """
        Create the profile, or fill in identity fields that are still empty.

        Args:
            uid: Principal uid
            phone_number: Verified phone number, if any
            email: Verified email, if any

        Returns:
            True if anything was written
        """
        async def _ensure(tx: Transaction) -> bool:
            now_ms = to_millis(self.clock())
            current = await tx.get(self.collection, uid)

            if current is None:
                tx.set(
                    self.collection,
                    uid,
                    build_profile_defaults(uid, now_ms, phone_number, email),
                )
                return True

            updates: Dict[str, Any] = {}
            if phone_number and not current.get("phoneNumber"):
                updates["phoneNumber"] = phone_number
            if email and not current.get("email"):
                updates["email"] = email
            if not updates:
                return False

            updates["updatedAt"] = now_ms
            tx.set(self.collection, uid, updates, merge=True)
            return True

        written = await self.store.run_transaction(_ensure)
        if written:
            logger.info("User profile synchronized", uid=uid)
        return written
