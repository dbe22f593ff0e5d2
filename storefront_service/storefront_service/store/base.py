"""Document store port: transactional key-document persistence.

All stock and order persistence goes through this interface. Adapters
implement reads, queries and an optimistic commit; the retry loop around
conflicting commits lives here so every adapter retries the same way.
"""

import copy
import operator
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, Field

from ..logger import component_logger

logger = component_logger("store")

T = TypeVar("T")
Key = tuple[str, str]
Filter = tuple[str, str, Any]

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


class StoreError(Exception):
    """Base class for document store failures."""


class TransactionConflict(StoreError):
    """Another transaction committed a document this one depends on."""

    def __init__(self, key: Key):
        self.key = key
        super().__init__(f"Write conflict on {key[0]}/{key[1]}")


class TransactionAborted(StoreError):
    """A transaction kept conflicting until the retry bound was reached."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")


class StoreUnavailable(StoreError):
    """The backing database could not be reached."""


class DocumentExists(StoreError):
    """``create`` targeted a document that already exists."""


class DocumentMissing(StoreError):
    """``update`` targeted a document that does not exist."""


class Document(BaseModel):
    """A stored document: its id, its data and an opaque version counter."""

    id: str
    data: dict[str, Any] = Field(default_factory=dict)
    version: int = 0


def matches_filters(data: dict, filters: list[Filter]) -> bool:
    """Check a document's data against ``(field, op, value)`` filters.

    A document missing a filtered field never matches, and neither does a
    comparison between incompatible types.
    """
    for field, op, value in filters:
        if op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        if field not in data:
            return False
        try:
            if not OPERATORS[op](data[field], value):
                return False
        except TypeError:
            return False
    return True


def order_and_limit(docs: list[Document], order_by: Optional[str], limit: Optional[int]) -> list[Document]:
    """Sort documents by a field (prefix with ``-`` for descending) and cut to ``limit``.

    Documents without the field sort last.
    """
    if order_by:
        descending = order_by.startswith("-")
        field = order_by.lstrip("-")
        present = [d for d in docs if d.data.get(field) is not None]
        absent = [d for d in docs if d.data.get(field) is None]
        docs = sorted(present, key=lambda d: d.data[field], reverse=descending) + absent
    if limit is not None:
        docs = docs[:limit]
    return docs


class Transaction(ABC):
    """Read/write set of one transaction attempt.

    Reads are recorded with the version they observed; writes are buffered
    until ``commit``, where the adapter must verify that nothing it read has
    changed and apply every write atomically, or raise ``TransactionConflict``.
    """

    def __init__(self) -> None:
        self._reads: dict[Key, Optional[int]] = {}
        self._snapshots: dict[Key, Optional[dict]] = {}
        self._writes: dict[Key, tuple[str, dict]] = {}

    @abstractmethod
    def _fetch(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read the current committed state of a document."""

    @abstractmethod
    def commit(self) -> None:
        """Validate the read set and apply the buffered writes atomically."""

    def rollback(self) -> None:
        """Discard the attempt."""

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read a document inside the transaction (repeatable within the attempt)."""
        key = (collection, doc_id)
        if key in self._writes:
            _, data = self._writes[key]
            return Document(id=doc_id, data=copy.deepcopy(data), version=self._reads.get(key) or 0)
        if key not in self._reads:
            doc = self._fetch(collection, doc_id)
            self._reads[key] = doc.version if doc else None
            self._snapshots[key] = copy.deepcopy(doc.data) if doc else None
        data = self._snapshots[key]
        if data is None:
            return None
        return Document(id=doc_id, data=copy.deepcopy(data), version=self._reads[key])

    def create(self, collection: str, doc_id: str, data: dict) -> None:
        """Insert a new document; fails with ``DocumentExists`` if it is already there."""
        key = (collection, doc_id)
        if self._snapshots.get(key) is not None or key in self._writes:
            raise DocumentExists(f"{collection}/{doc_id} already exists")
        self._writes[key] = ("create", copy.deepcopy(data))

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        """Replace (or insert) a document wholesale."""
        key = (collection, doc_id)
        op = self._writes[key][0] if key in self._writes else "set"
        self._writes[key] = (op, copy.deepcopy(data))

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        """Merge top-level fields into a document read earlier in this transaction."""
        key = (collection, doc_id)
        if key in self._writes:
            op, base = self._writes[key]
        elif key in self._reads:
            op, base = "set", self._snapshots[key]
            if base is None:
                raise DocumentMissing(f"{collection}/{doc_id} does not exist")
        else:
            raise StoreError(f"{collection}/{doc_id} must be read in the transaction before it is updated")
        merged = copy.deepcopy(base)
        merged.update(copy.deepcopy(fields))
        self._writes[key] = (op, merged)


class DocumentStore(ABC):
    """Transactional key-document store.

    Args:
        max_attempts: Default number of attempts per transaction.
        retry_backoff: Seconds slept after a conflict, multiplied by the attempt number.
    """

    def __init__(self, max_attempts: int = 5, retry_backoff: float = 0.0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff

    @abstractmethod
    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read a committed document outside any transaction."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """Snapshot query over one collection."""

    @abstractmethod
    def _begin(self) -> Transaction:
        """Start a new transaction attempt."""

    def close(self) -> None:
        """Release connections held by the adapter."""

    def run_transaction(self, fn: Callable[[Transaction], T], max_attempts: Optional[int] = None) -> T:
        """Run ``fn`` in a transaction, re-running it from scratch on write conflicts.

        Exceptions raised by ``fn`` abort the attempt and propagate unchanged.

        Args:
            fn: Read-modify-write function receiving the transaction.
            max_attempts: Override of the store's default retry bound.

        Returns:
            Whatever ``fn`` returned on the attempt that committed.

        Raises:
            TransactionAborted: Every attempt conflicted.
        """
        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            txn = self._begin()
            try:
                result = fn(txn)
                txn.commit()
            except TransactionConflict as exc:
                txn.rollback()
                logger.warning(f"Transaction attempt {attempt}/{attempts} conflicted: {exc}")
                if attempt < attempts and self.retry_backoff:
                    time.sleep(self.retry_backoff * attempt)
                continue
            except BaseException:
                txn.rollback()
                raise
            return result
        raise TransactionAborted(attempts)
