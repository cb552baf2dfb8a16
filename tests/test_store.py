"""
Document Store Tests
====================
Tests for transactional semantics across the store backends.
"""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis as FakeAsyncRedis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from otp_core.errors import FailedPrecondition
from otp_core.identity import Channel
from otp_core.otp import ChallengeStatus, ChallengeStore, hash_code
from otp_core.store import (
    InMemoryDocumentStore,
    RedisDocumentStore,
    SQLAlchemyDocumentStore,
    StoreError,
    TransactionConflict,
    create_schema,
    create_session_factory,
    next_sequence_value,
)


@pytest_asyncio.fixture
async def sql_store():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)
    yield SQLAlchemyDocumentStore(create_session_factory(engine))
    await engine.dispose()


async def increment(tx, collection="counters", key="c"):
    doc = await tx.get(collection, key) or {}
    value = doc.get("value", 0) + 1
    tx.set(collection, key, {"value": value})
    return value


class TestTransaction:
    """Tests for read tracking and write buffering."""

    @pytest.mark.asyncio
    async def test_reads_see_own_writes(self, store):
        """A transaction observes its buffered writes."""
        async def fn(tx):
            tx.set("docs", "a", {"x": 1})
            tx.set("docs", "a", {"y": 2}, merge=True)
            return await tx.get("docs", "a")

        assert await store.run_transaction(fn) == {"x": 1, "y": 2}
        assert await store.get("docs", "a") == {"x": 1, "y": 2}

    @pytest.mark.asyncio
    async def test_exception_aborts_without_writing(self, store):
        """Errors raised inside the function discard buffered writes."""
        async def fn(tx):
            tx.set("docs", "a", {"x": 1})
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await store.run_transaction(fn)
        assert await store.get("docs", "a") is None

    @pytest.mark.asyncio
    async def test_returned_snapshot_is_a_copy(self, store):
        """Mutating a read result does not affect the store."""
        await store.set("docs", "a", {"items": [1]})

        doc = await store.get("docs", "a")
        doc["items"].append(2)

        assert await store.get("docs", "a") == {"items": [1]}


class TestInMemoryStore:
    """Tests for the in-memory backend."""

    @pytest.mark.asyncio
    async def test_merge_write(self, store):
        """Merge writes keep untouched fields."""
        await store.set("docs", "a", {"x": 1, "y": 1})
        await store.set("docs", "a", {"y": 2}, merge=True)

        assert await store.get("docs", "a") == {"x": 1, "y": 2}

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_serializable(self, store):
        """Concurrent read-modify-write transactions do not lose updates."""
        results = await asyncio.gather(*[store.run_transaction(increment) for _ in range(5)])

        assert sorted(results) == [1, 2, 3, 4, 5]
        assert await store.get("counters", "c") == {"value": 5}

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        """A transaction that always conflicts raises TransactionConflict."""
        store = InMemoryDocumentStore(max_attempts=3, retry_base_delay=0, retry_max_delay=0)
        calls = 0

        async def fn(tx):
            nonlocal calls
            calls += 1
            await tx.get("docs", "a")
            await store.set("docs", "a", {"n": calls})
            tx.set("docs", "a", {"mine": True})

        with pytest.raises(TransactionConflict):
            await store.run_transaction(fn)
        assert calls == 3


class TestSQLAlchemyStore:
    """Tests for the SQLAlchemy backend on SQLite."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, sql_store):
        """Documents round-trip through the documents table."""
        await sql_store.set("docs", "a", {"x": 1, "nested": {"y": [1, 2]}})

        assert await sql_store.get("docs", "a") == {"x": 1, "nested": {"y": [1, 2]}}
        assert await sql_store.get("docs", "missing") is None

    @pytest.mark.asyncio
    async def test_merge(self, sql_store):
        """Merge writes update only the given fields."""
        await sql_store.set("docs", "a", {"x": 1, "y": 1})
        await sql_store.set("docs", "a", {"y": 2}, merge=True)

        assert await sql_store.get("docs", "a") == {"x": 1, "y": 2}

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, sql_store):
        """A concurrent change between read and commit forces a retry."""
        await sql_store.set("counters", "c", {"value": 10})
        attempts = 0

        async def fn(tx):
            nonlocal attempts
            attempts += 1
            value = await increment(tx)
            if attempts == 1:
                await sql_store.set("counters", "c", {"value": 100})
            return value

        assert await sql_store.run_transaction(fn) == 101
        assert attempts == 2
        assert await sql_store.get("counters", "c") == {"value": 101}

    @pytest.mark.asyncio
    async def test_sequence(self, sql_store):
        """Sequences increase by one per call."""
        assert await next_sequence_value(sql_store, "orders") == 1
        assert await next_sequence_value(sql_store, "orders") == 2


def make_redis(hgetall_result=None):
    pipe = MagicMock()
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    pipe.watch = AsyncMock()
    pipe.hgetall = AsyncMock(return_value=hgetall_result or {})
    pipe.reset = AsyncMock()
    pipe.execute = AsyncMock(return_value=[1])

    redis = MagicMock()
    redis.pipeline.return_value = pipe
    redis.hgetall = AsyncMock(return_value=hgetall_result or {})
    return redis, pipe


class TestRedisStore:
    """Tests for the Redis backend against a mocked client."""

    @pytest.mark.asyncio
    async def test_read_decodes_hash(self):
        """Hashes with bytes fields decode into documents."""
        redis, _ = make_redis({b"data": b'{"x": 1}', b"version": b"3"})
        store = RedisDocumentStore(redis)

        assert await store.get("docs", "a") == {"x": 1}
        redis.hgetall.assert_awaited_with("otpdoc:docs:a")

    @pytest.mark.asyncio
    async def test_commit_writes_versioned_hash(self):
        """A write in a transaction watches the key and bumps the version."""
        redis, pipe = make_redis({b"data": b'{"value": 1}', b"version": b"1"})
        store = RedisDocumentStore(redis)

        assert await store.run_transaction(increment) == 2

        pipe.watch.assert_awaited_with("otpdoc:counters:c")
        pipe.multi.assert_called_once()
        key, kwargs = pipe.hset.call_args.args[0], pipe.hset.call_args.kwargs
        assert key == "otpdoc:counters:c"
        assert json.loads(kwargs["mapping"]["data"]) == {"value": 2}
        assert kwargs["mapping"]["version"] == 2

    @pytest.mark.asyncio
    async def test_watch_error_is_conflict(self):
        """WatchError on EXEC surfaces as TransactionConflict after retries."""
        redis, pipe = make_redis()
        pipe.execute.side_effect = WatchError("changed")
        store = RedisDocumentStore(redis, max_attempts=2, retry_base_delay=0, retry_max_delay=0)

        with pytest.raises(TransactionConflict):
            await store.run_transaction(increment)
        assert pipe.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_redis_error_is_store_error(self):
        """Other Redis errors surface as StoreError."""
        redis, _ = make_redis()
        redis.hgetall.side_effect = RedisConnectionError("down")
        store = RedisDocumentStore(redis)

        with pytest.raises(StoreError):
            await store.get("docs", "a")


@pytest.fixture
def fake_redis():
    return FakeAsyncRedis(server=FakeServer())


class TestRedisStoreIntegration:
    """Tests for the Redis backend against an in-process Redis server."""

    @pytest.mark.asyncio
    async def test_concurrent_increments_serialize(self, fake_redis):
        """Concurrent transactions on one key each see a distinct value."""
        store = RedisDocumentStore(fake_redis, max_attempts=20, retry_base_delay=0, retry_max_delay=0)

        values = await asyncio.gather(*[store.run_transaction(increment) for _ in range(5)])

        assert sorted(values) == [1, 2, 3, 4, 5]
        assert await store.get("counters", "c") == {"value": 5}

    @pytest.mark.asyncio
    async def test_write_between_read_and_exec_retries(self, fake_redis):
        """A write to a watched key aborts EXEC and the transaction reruns."""
        store = RedisDocumentStore(fake_redis, retry_base_delay=0, retry_max_delay=0)
        await store.set("counters", "c", {"value": 10})
        attempts = []

        async def interfered(tx):
            doc = await tx.get("counters", "c")
            attempts.append(doc["value"])
            if len(attempts) == 1:
                await store.set("counters", "c", {"value": 20})
            tx.set("counters", "c", {"value": doc["value"] + 1})
            return doc["value"] + 1

        assert await store.run_transaction(interfered) == 21
        assert attempts == [10, 20]
        assert await store.get("counters", "c") == {"value": 21}
        raw = await fake_redis.hgetall("otpdoc:counters:c")
        assert int(raw[b"version"]) == 3

    @pytest.mark.asyncio
    async def test_merge_keeps_existing_fields(self, fake_redis):
        """Merge writes overlay fields on the stored document."""
        store = RedisDocumentStore(fake_redis)
        await store.set("docs", "a", {"x": 1, "y": 2})

        await store.set("docs", "a", {"y": 3, "z": 4}, merge=True)
        assert await store.get("docs", "a") == {"x": 1, "y": 3, "z": 4}

        await store.set("docs", "a", {"z": 5})
        assert await store.get("docs", "a") == {"z": 5}

    @pytest.mark.asyncio
    async def test_merge_into_missing_document(self, fake_redis):
        """A merge write to a missing key creates it."""
        store = RedisDocumentStore(fake_redis)

        await store.set("docs", "new", {"x": 1}, merge=True)

        assert await store.get("docs", "new") == {"x": 1}

    @pytest.mark.asyncio
    async def test_concurrent_challenge_verifies_succeed_once(self, fake_redis, clock):
        """Exactly one of several concurrent correct verifies wins."""
        store = RedisDocumentStore(fake_redis, max_attempts=20, retry_base_delay=0, retry_max_delay=0)
        challenges = ChallengeStore(store, clock=clock)
        salt, code_hash = hash_code("otp_1_aaaaaaaaaaaa", "123456")
        await challenges.create(
            challenge_id="otp_1_aaaaaaaaaaaa",
            channel=Channel.SMS,
            target="+22790123456",
            code_hash=code_hash,
            salt=salt,
            expires_at=clock() + timedelta(minutes=5),
            max_attempts=5,
        )

        results = await asyncio.gather(
            *[challenges.verify("otp_1_aaaaaaaaaaaa", "123456") for _ in range(4)],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(r, FailedPrecondition) for r in results if isinstance(r, Exception))
        stored = await challenges.get("otp_1_aaaaaaaaaaaa")
        assert stored.status is ChallengeStatus.VERIFIED
        assert stored.attempts == 1


class TestSequence:
    """Tests for named sequences."""

    @pytest.mark.asyncio
    async def test_concurrent_sequence_values_unique(self, store):
        """Concurrent callers each get a distinct value."""
        values = await asyncio.gather(*[next_sequence_value(store, "orders") for _ in range(4)])

        assert sorted(values) == [1, 2, 3, 4]
