"""
SQLAlchemy Document Store
=========================
Async SQLAlchemy backend storing documents as JSON rows with a version column.

Commits compare-and-set on ``version``, so two transactions that read the
same document cannot both write it.

Usage:
    engine = create_engine("postgresql+asyncpg://...")
    await create_schema(engine)
    store = SQLAlchemyDocumentStore(create_session_factory(engine))
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import structlog
from sqlalchemy import JSON, Integer, String, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .base import DocRef, Document, DocumentStore, Transaction, TransactionConflict, StoreError

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class DocumentRow(Base):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


def create_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create the async database engine.

    Args:
        database_url: Async connection string (postgresql+asyncpg://...)
        pool_size: Connection pool size (default: 10)
        max_overflow: Max overflow connections (default: 20)
        pool_pre_ping: Enable connection health checks (default: True)
        echo: Log SQL statements (default: False)
    """
    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
    )
    logger.info("Database engine initialized", pool_size=pool_size)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by SQLAlchemyDocumentStore."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create the documents table if it does not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class SQLAlchemyDocumentStore(DocumentStore):
    """Document store on any async SQLAlchemy database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], **kwargs):
        super().__init__(**kwargs)
        self._session_factory = session_factory

    async def _read(self, collection: str, key: str) -> Tuple[Optional[Document], Optional[int]]:
        try:
            async with self._session_factory() as session:
                row = await self._fetch(session, (collection, key))
        except SQLAlchemyError as e:
            raise StoreError(f"Read failed for {collection}/{key}: {e}") from e
        if row is None:
            return None, None
        return dict(row.data), row.version

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Transaction]:
        tx = Transaction(self._read)
        yield tx
        await self._commit(tx)

    async def _fetch(self, session: AsyncSession, ref: DocRef):
        result = await session.execute(
            select(DocumentRow.data, DocumentRow.version).where(
                DocumentRow.collection == ref[0],
                DocumentRow.key == ref[1],
            )
        )
        return result.first()

    async def _commit(self, tx: Transaction) -> None:
        if not tx.writes and not tx.read_versions:
            return
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._apply(session, tx)
        except IntegrityError as e:
            # Concurrent insert of the same key
            raise TransactionConflict(str(e.orig)) from e
        except SQLAlchemyError as e:
            raise StoreError(f"Commit failed: {e}") from e

    async def _apply(self, session: AsyncSession, tx: Transaction) -> None:
        for ref, observed in tx.read_versions.items():
            if ref in tx.writes:
                continue
            row = await self._fetch(session, ref)
            current = row.version if row is not None else None
            if current != observed:
                raise TransactionConflict(f"{ref[0]}/{ref[1]} changed during transaction")

        for ref, write in tx.writes.items():
            row = await self._fetch(session, ref)
            current = row.version if row is not None else None
            if ref in tx.read_versions and current != tx.read_versions[ref]:
                raise TransactionConflict(f"{ref[0]}/{ref[1]} changed during transaction")

            if row is None:
                session.add(DocumentRow(
                    collection=ref[0],
                    key=ref[1],
                    data=write.data,
                    version=1,
                ))
                continue

            data = {**row.data, **write.data} if write.merge else write.data
            result = await session.execute(
                update(DocumentRow)
                .where(
                    DocumentRow.collection == ref[0],
                    DocumentRow.key == ref[1],
                    DocumentRow.version == current,
                )
                .values(data=data, version=current + 1)
            )
            if result.rowcount != 1:
                raise TransactionConflict(f"{ref[0]}/{ref[1]} changed during commit")
