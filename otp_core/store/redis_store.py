"""
Redis Document Store
====================
Redis backend using WATCH / MULTI / EXEC optimistic transactions.

Each document is a hash with ``data`` (JSON) and ``version`` fields under
``{prefix}:{collection}:{key}``.
"""

import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

import structlog
from redis.exceptions import RedisError, WatchError

from .base import Document, DocumentStore, Transaction, TransactionConflict, StoreError

logger = structlog.get_logger(__name__)


class RedisDocumentStore(DocumentStore):
    """
    Redis-backed document store.

    Uses WATCH on every document read inside a transaction; EXEC fails if
    any watched key changed, which surfaces as TransactionConflict.
    """

    def __init__(self, redis_client, prefix: str = "otpdoc", **kwargs):
        """
        Args:
            redis_client: Async Redis client (redis.asyncio.Redis)
            prefix: Key namespace
        """
        super().__init__(**kwargs)
        self.redis = redis_client
        self.prefix = prefix

    def get_key(self, collection: str, key: str) -> str:
        """Generate the Redis key for a document."""
        return f"{self.prefix}:{collection}:{key}"

    @staticmethod
    def _decode(raw: dict) -> Tuple[Optional[Document], Optional[int]]:
        if not raw:
            return None, None
        data = raw.get(b"data", raw.get("data"))
        version = raw.get(b"version", raw.get("version"))
        return json.loads(data), int(version)

    async def _read(self, collection: str, key: str) -> Tuple[Optional[Document], Optional[int]]:
        try:
            raw = await self.redis.hgetall(self.get_key(collection, key))
        except RedisError as e:
            raise StoreError(f"Read failed for {collection}/{key}: {e}") from e
        return self._decode(raw)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Transaction]:
        async with self.redis.pipeline(transaction=True) as pipe:

            async def watched_read(collection: str, key: str):
                redis_key = self.get_key(collection, key)
                await pipe.watch(redis_key)
                return self._decode(await pipe.hgetall(redis_key))

            tx = Transaction(watched_read)
            yield tx
            await self._commit(pipe, tx)

    async def _commit(self, pipe, tx: Transaction) -> None:
        try:
            staged = []
            for (collection, key), write in tx.writes.items():
                redis_key = self.get_key(collection, key)
                if (collection, key) in tx.read_versions:
                    # Already watched; the read snapshot is the merge base
                    version = tx.read_versions[(collection, key)] or 0
                    base = None
                else:
                    await pipe.watch(redis_key)
                    base, current = self._decode(await pipe.hgetall(redis_key))
                    version = current or 0
                data = {**base, **write.data} if write.merge and base else write.data
                staged.append((redis_key, data, version + 1))

            if not staged:
                await pipe.reset()
                return

            pipe.multi()
            for redis_key, data, version in staged:
                pipe.hset(redis_key, mapping={"data": json.dumps(data), "version": version})
            await pipe.execute()
        except WatchError as e:
            raise TransactionConflict("Watched document changed during transaction") from e
        except RedisError as e:
            raise StoreError(f"Commit failed: {e}") from e
