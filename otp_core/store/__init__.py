"""
Document Stores
===============
Transactional keyed-document repositories shared by the OTP components.
"""

# Re-export all public APIs
from .base import (
    DocumentStore,
    Transaction,
    PendingWrite,
    StoreError,
    TransactionConflict,
)
from .memory import InMemoryDocumentStore
from .sqlalchemy_store import (
    SQLAlchemyDocumentStore,
    DocumentRow,
    create_engine,
    create_session_factory,
    create_schema,
)
from .redis_store import RedisDocumentStore
from .sequence import next_sequence_value

__all__ = [
    # Base
    "DocumentStore",
    "Transaction",
    "PendingWrite",
    "StoreError",
    "TransactionConflict",
    # Backends
    "InMemoryDocumentStore",
    "SQLAlchemyDocumentStore",
    "RedisDocumentStore",
    # SQLAlchemy helpers
    "DocumentRow",
    "create_engine",
    "create_session_factory",
    "create_schema",
    # Sequences
    "next_sequence_value",
]
