"""
In-Memory Document Store
========================
Per-process document store for development and testing.

Use SQLAlchemyDocumentStore or RedisDocumentStore in production.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Tuple

from .base import DocRef, Document, DocumentStore, Transaction, TransactionConflict


class InMemoryDocumentStore(DocumentStore):
    """
    Versioned dict-backed store with optimistic transactions.

    Reads yield to the event loop so that concurrent transactions interleave
    the way they would against a remote store, and conflicts are real.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._documents: Dict[DocRef, Tuple[Document, int]] = {}
        self._commit_lock = asyncio.Lock()

    async def _read(self, collection: str, key: str) -> Tuple[Optional[Document], Optional[int]]:
        await asyncio.sleep(0)
        entry = self._documents.get((collection, key))
        if entry is None:
            return None, None
        data, version = entry
        return copy.deepcopy(data), version

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Transaction]:
        tx = Transaction(self._read)
        yield tx
        await self._commit(tx)

    async def _commit(self, tx: Transaction) -> None:
        async with self._commit_lock:
            for ref, observed in tx.read_versions.items():
                entry = self._documents.get(ref)
                current = entry[1] if entry is not None else None
                if current != observed:
                    raise TransactionConflict(f"{ref[0]}/{ref[1]} changed during transaction")

            for ref, write in tx.writes.items():
                entry = self._documents.get(ref)
                if entry is None:
                    self._documents[ref] = (copy.deepcopy(write.data), 1)
                    continue
                stored, version = entry
                data = {**stored, **write.data} if write.merge else write.data
                self._documents[ref] = (copy.deepcopy(data), version + 1)

    def dump(self, collection: str) -> Dict[str, Document]:
        """Snapshot of one collection, for inspection in tests."""
        return {
            key: copy.deepcopy(data)
            for (name, key), (data, _) in self._documents.items()
            if name == collection
        }
