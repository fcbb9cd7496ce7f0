from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Mapping, Optional

from sqlalchemy import Column, Integer, MetaData, PrimaryKeyConstraint, String, Table, Text, create_engine
from sqlalchemy.engine import Engine

from ..config import StoreConfig
from ..errors import StoreError
from .helpers import is_valid_identifier, new_document_id, normalize_id, validate_identifier
from .metrics import observe_store_write
from .session import DocumentSession

logger = logging.getLogger(__name__)

# Metric label for writes whose collection name was rejected.
INVALID_COLLECTION_LABEL = "invalid"

MAX_UPDATE_ATTEMPTS = 10


def _load(body: str) -> dict[str, Any]:
    return json.loads(body)


def _dump(document: Mapping[str, Any]) -> str:
    return json.dumps({k: v for k, v in document.items() if k != "_id"})


class DocumentStore:
    """
    Collections of JSON documents kept in a single SQL table.

    Each row is (collection, doc_id, body, version) where body is the JSON
    document without its identifier. Records handed back to callers carry
    the identifier under ``_id``.

    Writes are wrapped like this:
    - the collection name is validated before anything else
    - any failure is re-raised as StoreError
    - latency and status are recorded per collection and operation

    Partial updates are optimistic: the body is merged in Python and written
    back only if the row version is unchanged, otherwise the merge is redone
    on a fresh read. Two concurrent updates of one document therefore both
    land, whatever their order.
    """

    def __init__(self, engine: Engine, table: str = "documents") -> None:
        self.engine = engine
        self.table = validate_identifier(table, "table")
        self._metadata = MetaData()
        Table(
            self.table,
            self._metadata,
            Column("collection", String(64), nullable=False),
            Column("doc_id", String(64), nullable=False),
            Column("body", Text, nullable=False),
            Column("version", Integer, nullable=False, default=0),
            PrimaryKeyConstraint("collection", "doc_id"),
        )

    @classmethod
    def from_config(cls, config: StoreConfig) -> "DocumentStore":
        engine = create_engine(config.database_url, pool_pre_ping=True)
        return cls(engine, table=config.table)

    def ensure_schema(self) -> None:
        """Create the documents table if it does not exist."""
        self._metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def session(self) -> DocumentSession:
        return DocumentSession(self.engine, self.table)

    @contextmanager
    def _write(self, collection: str, op_type: str) -> Iterator[None]:
        start_time = time.monotonic()
        label = collection if is_valid_identifier(collection) else INVALID_COLLECTION_LABEL
        status = "success"
        try:
            validate_identifier(collection, "collection")
            yield
        except Exception as exc:
            status = "error"
            raise StoreError(str(exc)) from exc
        finally:
            observe_store_write(label, op_type, status, time.monotonic() - start_time)

    def insert(self, collection: str, data: Mapping[str, Any]) -> str:
        """
        Insert ``data`` as a new document and return its generated id.
        """
        with self._write(collection, "insert"):
            if not isinstance(data, Mapping):
                raise TypeError(f"document data must be a mapping, got {type(data).__name__}")
            doc_id = new_document_id()
            with self.session() as session:
                session.insert(collection, doc_id, _dump(data))
        logger.debug("Inserted %s/%s", collection, doc_id)
        return doc_id

    def find_one_and_update(
        self,
        collection: str,
        doc_id: Any,
        partial: Mapping[str, Any],
    ) -> Optional[dict[str, Any]]:
        """
        Replace the given fields of one document and return it as updated.

        Fields not present in ``partial`` are kept. Returns None when no
        document has this id; that is not an error.

        Raises:
            StoreError: If the document kept changing under us for
                MAX_UPDATE_ATTEMPTS attempts, or the write failed
        """
        with self._write(collection, "update"):
            if not isinstance(partial, Mapping):
                raise TypeError(f"update data must be a mapping, got {type(partial).__name__}")
            key = normalize_id(doc_id)
            changes = {k: v for k, v in partial.items() if k != "_id"}

            for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
                # Each attempt in its own transaction so the re-read sees the winner's write.
                with self.session() as session:
                    row = session.read(collection, key)
                    if row is None:
                        return None
                    document = _load(row["body"])
                    document.update(changes)
                    if session.compare_and_set(collection, key, row["version"], _dump(document)):
                        return {"_id": key, **document}
                logger.debug("Version conflict on %s/%s (attempt %d)", collection, key, attempt)

            raise StoreError(
                f"Update of {collection}/{key} lost {MAX_UPDATE_ATTEMPTS} version races; giving up"
            )

    def delete_one(self, collection: str, doc_id: Any) -> int:
        """Delete one document and return the number removed (0 or 1)."""
        with self._write(collection, "delete"):
            key = normalize_id(doc_id)
            with self.session() as session:
                return session.delete(collection, key)

    def find_one(self, collection: str, doc_id: Any) -> Optional[dict[str, Any]]:
        validate_identifier(collection, "collection")
        key = normalize_id(doc_id)
        with self.session() as session:
            row = session.read(collection, key)
        if row is None:
            return None
        return {"_id": key, **_load(row["body"])}

    def find_all(
        self,
        collection: str,
        predicate: Optional[Callable[[dict[str, Any]], bool]] = None,
    ) -> list[dict[str, Any]]:
        """
        Return every document of a collection, optionally filtered in memory.
        """
        validate_identifier(collection, "collection")
        with self.session() as session:
            rows = session.read_all(collection)
        documents = [{"_id": row["doc_id"], **_load(row["body"])} for row in rows]
        if predicate is not None:
            documents = [doc for doc in documents if predicate(doc)]
        return documents

    def find_by_field(self, collection: str, field: str, value: Any) -> Optional[dict[str, Any]]:
        """Return the first document whose ``field`` equals ``value``."""
        for document in self.find_all(collection, lambda doc: doc.get(field) == value):
            return document
        return None
