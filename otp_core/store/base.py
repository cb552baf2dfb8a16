"""
Document Store Base
===================
Atomic read-modify-write over keyed JSON documents.

A transaction function receives a ``Transaction``; reads record the version
they observed and writes are buffered. The backend commits the buffered
writes only if every document read is still at its observed version, and
raises ``TransactionConflict`` otherwise. ``run_transaction`` retries the
whole function on conflict with jittered exponential backoff.

Usage:
    async def consume(tx):
        doc = await tx.get("counters", "orders") or {}
        tx.set("counters", "orders", {"value": doc.get("value", 0) + 1})

    await store.run_transaction(consume)
"""

import copy
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DocRef = Tuple[str, str]
Document = Dict[str, Any]
Reader = Callable[[str, str], Awaitable[Tuple[Optional[Document], Optional[int]]]]


class StoreError(Exception):
    """Raised when the document store cannot complete an operation."""
    pass


class TransactionConflict(StoreError):
    """Raised when a document read by a transaction changed before commit."""
    pass


@dataclass
class PendingWrite:
    """A buffered write; ``merge`` writes are applied over the stored document."""
    data: Document
    merge: bool = False


class Transaction:
    """
    Read-tracking, write-buffering transaction handle.

    Reads inside one transaction are repeatable: the first read of a document
    is cached and later reads see the cached snapshot plus this
    transaction's own buffered writes.
    """

    def __init__(self, reader: Reader):
        self._reader = reader
        self._snapshots: Dict[DocRef, Optional[Document]] = {}
        self.read_versions: Dict[DocRef, Optional[int]] = {}
        self.writes: Dict[DocRef, PendingWrite] = {}

    async def get(self, collection: str, key: str) -> Optional[Document]:
        """Read a document, or None if it does not exist."""
        ref = (collection, key)
        if ref not in self._snapshots:
            data, version = await self._reader(collection, key)
            self._snapshots[ref] = data
            self.read_versions[ref] = version

        current = self._snapshots[ref]
        pending = self.writes.get(ref)
        if pending is not None:
            if pending.merge and current is not None:
                current = {**current, **pending.data}
            else:
                current = pending.data
        return copy.deepcopy(current) if current is not None else None

    def set(self, collection: str, key: str, data: Document, merge: bool = False) -> None:
        """Buffer a write. With ``merge``, fields are merged into the stored document."""
        ref = (collection, key)
        data = copy.deepcopy(data)
        previous = self.writes.get(ref)

        if merge and previous is not None:
            self.writes[ref] = PendingWrite({**previous.data, **data}, previous.merge)
        elif merge and ref in self._snapshots and self._snapshots[ref] is not None:
            # Merge base is known, so the write becomes a full replacement
            self.writes[ref] = PendingWrite({**self._snapshots[ref], **data})
        else:
            self.writes[ref] = PendingWrite(data, merge)


class DocumentStore(ABC):
    """
    Abstract transactional document store.

    Backends implement ``_transaction`` (begin, then commit on clean exit)
    and ``_read`` (non-transactional read returning data and version).
    """

    def __init__(
        self,
        max_attempts: int = 5,
        retry_base_delay: float = 0.005,
        retry_max_delay: float = 0.25,
    ):
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    @abstractmethod
    def _transaction(self) -> AbstractAsyncContextManager:
        """Yield a Transaction and commit its writes when the block exits cleanly."""

    @abstractmethod
    async def _read(self, collection: str, key: str) -> Tuple[Optional[Document], Optional[int]]:
        """Read a document and its version outside of any transaction."""

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """
        Run ``fn`` atomically, retrying from scratch on write conflicts.

        Exceptions raised by ``fn`` abort the transaction without writing and
        are not retried.

        Raises:
            TransactionConflict: If every attempt conflicted
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransactionConflict),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(
                multiplier=self.retry_base_delay,
                max=self.retry_max_delay,
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    async with self._transaction() as tx:
                        result = await fn(tx)
        except TransactionConflict:
            logger.warning("Transaction retries exhausted", attempts=self.max_attempts)
            raise
        return result

    async def get(self, collection: str, key: str) -> Optional[Document]:
        """Read a document outside of a transaction."""
        data, _ = await self._read(collection, key)
        return data

    async def set(self, collection: str, key: str, data: Document, merge: bool = False) -> None:
        """Write a single document outside of a read-modify-write cycle."""
        async def _write(tx: Transaction) -> None:
            tx.set(collection, key, data, merge=merge)

        await self.run_transaction(_write)
