"""
Atomic Sequences
================
Named monotonically increasing counters on top of a DocumentStore.
"""

from otp_core.timeutil import to_millis, utc_now

from .base import DocumentStore, Transaction

SEQUENCES_COLLECTION = "sequences"


async def next_sequence_value(
    store: DocumentStore,
    name: str,
    collection: str = SEQUENCES_COLLECTION,
) -> int:
    """
    Atomically increment and return a named counter (e.g., order numbers).

    The first call for a name returns 1.
    """
    async def _increment(tx: Transaction) -> int:
        doc = await tx.get(collection, name) or {}
        value = int(doc.get("value", 0)) + 1
        tx.set(collection, name, {"value": value, "updatedAt": to_millis(utc_now())})
        return value

    return await store.run_transaction(_increment)
