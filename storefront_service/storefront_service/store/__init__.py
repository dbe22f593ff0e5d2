"""Document store adapters."""

from .base import (
    Document,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    StoreError,
    StoreUnavailable,
    Transaction,
    TransactionAborted,
    TransactionConflict,
)
from .memory import InMemoryDocumentStore


def build_store(backend: str, database_url: str = "", max_attempts: int = 5, retry_backoff: float = 0.0) -> DocumentStore:
    """Return the configured document store adapter.

    Args:
        backend: ``memory`` or ``sql``
        database_url: SQLAlchemy URL for the ``sql`` backend
        max_attempts: Attempts per transaction before giving up
        retry_backoff: Seconds slept per attempt after a conflict

    Raises:
        ValueError: Unknown backend
    """
    if backend == "memory":
        return InMemoryDocumentStore(max_attempts=max_attempts, retry_backoff=retry_backoff)
    if backend == "sql":
        from .sql import SqlDocumentStore

        return SqlDocumentStore(database_url, max_attempts=max_attempts, retry_backoff=retry_backoff)
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = [
    "Document",
    "DocumentExists",
    "DocumentMissing",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoreError",
    "StoreUnavailable",
    "Transaction",
    "TransactionAborted",
    "TransactionConflict",
    "build_store",
]
