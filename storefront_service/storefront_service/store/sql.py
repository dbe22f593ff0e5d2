"""Relational document store built on SQLAlchemy.

Documents live in one table keyed by ``(collection, doc_id)`` with a JSON
payload and a version column. A commit is a set of conditional writes,
``UPDATE ... WHERE version = :seen``, run in one database transaction; an
update that matches no row means another writer got there first.
"""

from contextlib import contextmanager
from typing import Optional, Union

from sqlalchemy import (
    JSON,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from .base import (
    Document,
    DocumentExists,
    DocumentStore,
    Filter,
    StoreUnavailable,
    Transaction,
    TransactionConflict,
    matches_filters,
    order_and_limit,
)

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("collection", String(128), primary_key=True),
    Column("doc_id", String(128), primary_key=True),
    Column("data", JSON, nullable=False),
    Column("version", Integer, nullable=False),
)


@contextmanager
def translate_errors():
    """Turn connectivity errors into ``StoreUnavailable``."""
    try:
        yield
    except OperationalError as exc:
        raise StoreUnavailable(str(exc.orig or exc)) from exc


def _by_key(collection: str, doc_id: str):
    return (documents.c.collection == collection) & (documents.c.doc_id == doc_id)


class _SqlTransaction(Transaction):
    def __init__(self, connection: Connection):
        super().__init__()
        self._conn = connection

    def _fetch(self, collection: str, doc_id: str) -> Optional[Document]:
        with translate_errors():
            row = self._conn.execute(
                select(documents.c.data, documents.c.version).where(_by_key(collection, doc_id))
            ).first()
        if row is None:
            return None
        return Document(id=doc_id, data=row.data, version=row.version)

    def commit(self) -> None:
        try:
            with translate_errors():
                self._check_unwritten_reads()
                for (collection, doc_id), (op, data) in self._writes.items():
                    self._write(collection, doc_id, op, data)
                self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise
        finally:
            self._conn.close()

    def rollback(self) -> None:
        if not self._conn.closed:
            self._conn.rollback()
            self._conn.close()

    def _check_unwritten_reads(self) -> None:
        for key, seen in self._reads.items():
            if key in self._writes:
                continue
            current = self._conn.execute(select(documents.c.version).where(_by_key(*key))).scalar_one_or_none()
            if current != seen:
                raise TransactionConflict(key)

    def _write(self, collection: str, doc_id: str, op: str, data: dict) -> None:
        key = (collection, doc_id)
        if key in self._reads:
            seen = self._reads[key]
            if seen is None:
                self._insert(collection, doc_id, data, on_duplicate=TransactionConflict(key))
                return
            result = self._conn.execute(
                update(documents)
                .where(_by_key(collection, doc_id) & (documents.c.version == seen))
                .values(data=data, version=seen + 1)
            )
            if result.rowcount == 0:
                raise TransactionConflict(key)
            return

        if op == "create":
            self._insert(collection, doc_id, data, on_duplicate=DocumentExists(f"{collection}/{doc_id} already exists"))
            return

        # Blind write of a document this transaction never read.
        result = self._conn.execute(
            update(documents)
            .where(_by_key(collection, doc_id))
            .values(data=data, version=documents.c.version + 1)
        )
        if result.rowcount == 0:
            self._insert(collection, doc_id, data, on_duplicate=TransactionConflict(key))

    def _insert(self, collection: str, doc_id: str, data: dict, on_duplicate: Exception) -> None:
        try:
            self._conn.execute(insert(documents).values(collection=collection, doc_id=doc_id, data=data, version=1))
        except IntegrityError as exc:
            raise on_duplicate from exc


class SqlDocumentStore(DocumentStore):
    """Document store over any SQLAlchemy-supported database.

    Args:
        url_or_engine: Database URL or an existing engine.
        max_attempts: Default number of attempts per transaction.
        retry_backoff: Seconds slept after a conflict, multiplied by the attempt number.
        create_schema: Create the ``documents`` table if it does not exist.
    """

    def __init__(
        self,
        url_or_engine: Union[str, Engine],
        max_attempts: int = 5,
        retry_backoff: float = 0.0,
        create_schema: bool = True,
    ):
        super().__init__(max_attempts=max_attempts, retry_backoff=retry_backoff)
        if isinstance(url_or_engine, str):
            self.engine = create_engine(url_or_engine)
        else:
            self.engine = url_or_engine
        if create_schema:
            with translate_errors():
                metadata.create_all(self.engine)

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        with translate_errors(), self.engine.connect() as conn:
            row = conn.execute(
                select(documents.c.data, documents.c.version).where(_by_key(collection, doc_id))
            ).first()
        if row is None:
            return None
        return Document(id=doc_id, data=row.data, version=row.version)

    def query(
        self,
        collection: str,
        filters: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        # JSON operators differ per dialect; filter the collection in Python.
        with translate_errors(), self.engine.connect() as conn:
            rows = conn.execute(
                select(documents.c.doc_id, documents.c.data, documents.c.version).where(
                    documents.c.collection == collection
                )
            ).all()
        docs = [
            Document(id=row.doc_id, data=row.data, version=row.version)
            for row in rows
            if matches_filters(row.data, filters or [])
        ]
        return order_and_limit(docs, order_by, limit)

    def seed(self, collection: str, doc_id: str, data: dict) -> str:
        """Insert or replace a document outside the optimistic protocol."""
        self.run_transaction(lambda txn: txn.set(collection, doc_id, data))
        return doc_id

    def _begin(self) -> Transaction:
        with translate_errors():
            return _SqlTransaction(self.engine.connect())

    def close(self) -> None:
        self.engine.dispose()
