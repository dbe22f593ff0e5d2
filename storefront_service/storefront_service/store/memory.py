"""In-process document store for tests and local development.

Commits are validated and applied under a single lock, which stands in for
the database's atomic commit. Transaction bodies run outside the lock, so
concurrent read-modify-write cycles race exactly like they would against a
real optimistic store.
"""

import copy
import threading
import uuid
from typing import Optional

from .base import (
    Document,
    DocumentExists,
    DocumentStore,
    Filter,
    Transaction,
    TransactionConflict,
    matches_filters,
    order_and_limit,
)


class _MemoryTransaction(Transaction):
    def __init__(self, store: "InMemoryDocumentStore"):
        super().__init__()
        self._store = store

    def _fetch(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._store.get_document(collection, doc_id)

    def commit(self) -> None:
        documents = self._store._documents
        with self._store._lock:
            for key, seen in self._reads.items():
                current = documents.get(key)
                if (current.version if current else None) != seen:
                    raise TransactionConflict(key)
            for key, (op, _) in self._writes.items():
                if op == "create" and key not in self._reads and key in documents:
                    raise DocumentExists(f"{key[0]}/{key[1]} already exists")
            for (collection, doc_id), (_, data) in self._writes.items():
                current = documents.get((collection, doc_id))
                version = (current.version if current else 0) + 1
                documents[(collection, doc_id)] = Document(id=doc_id, data=copy.deepcopy(data), version=version)


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store with optimistic transactions."""

    def __init__(self, max_attempts: int = 5, retry_backoff: float = 0.0):
        super().__init__(max_attempts=max_attempts, retry_backoff=retry_backoff)
        self._documents: dict[tuple[str, str], Document] = {}
        self._lock = threading.Lock()

    def seed(self, collection: str, doc_id: Optional[str], data: dict) -> str:
        """Write a document directly, outside any transaction.

        Args:
            collection: Target collection
            doc_id: Document id; generated when ``None``
            data: Document data

        Returns:
            str: The document id
        """
        doc_id = doc_id or uuid.uuid4().hex
        with self._lock:
            current = self._documents.get((collection, doc_id))
            version = (current.version if current else 0) + 1
            self._documents[(collection, doc_id)] = Document(id=doc_id, data=copy.deepcopy(data), version=version)
        return doc_id

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._documents.get((collection, doc_id))
            return doc.model_copy(deep=True) if doc else None

    def query(
        self,
        collection: str,
        filters: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        with self._lock:
            docs = [doc.model_copy(deep=True) for (coll, _), doc in self._documents.items() if coll == collection]
        docs = [doc for doc in docs if matches_filters(doc.data, filters or [])]
        return order_and_limit(docs, order_by, limit)

    def _begin(self) -> Transaction:
        return _MemoryTransaction(self)
