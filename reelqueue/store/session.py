from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from .helpers import validate_identifier


class DocumentSession:
    """
    One transaction on the documents table.

    Every row carries a ``version`` that is bumped on each body change, so
    read-modify-write callers can detect a concurrent writer:

        with DocumentSession(engine, "documents") as session:
            row = session.read("movies", doc_id)
            ...
            if session.compare_and_set("movies", doc_id, row["version"], body) == 0:
                ...  # someone else wrote first; retry in a NEW session

    The transaction commits on a clean exit and rolls back on an exception.
    Sessions do not nest.
    """

    def __init__(self, engine: Engine, table: str) -> None:
        self.engine = engine
        self.table = validate_identifier(table, "table")
        self._conn: Connection | None = None
        self._tx = None

    def __enter__(self) -> "DocumentSession":
        if self._conn is not None:
            raise RuntimeError("DocumentSession is already active; nested sessions are not allowed")
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._tx is not None:
                if exc_type:
                    self._tx.rollback()
                else:
                    self._tx.commit()
        finally:
            if self._conn is not None:
                self._conn.close()

            self._conn = None
            self._tx = None

        return False

    def _execute(self, sql: str, params: dict[str, Any]):
        if self._conn is None:
            raise RuntimeError("DocumentSession is not active; use within a context manager")
        return self._conn.execute(text(sql), params)

    def read(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Return ``{"body", "version"}`` for one document, or None."""
        result = self._execute(
            f"SELECT body, version FROM {self.table} "
            "WHERE collection = :collection AND doc_id = :doc_id",
            {"collection": collection, "doc_id": doc_id},
        )
        row = result.mappings().one_or_none()
        return None if row is None else dict(row)

    def read_all(self, collection: str) -> list[dict[str, Any]]:
        """Return ``{"doc_id", "body"}`` rows of a collection ordered by id."""
        result = self._execute(
            f"SELECT doc_id, body FROM {self.table} WHERE collection = :collection ORDER BY doc_id",
            {"collection": collection},
        )
        return [dict(row) for row in result.mappings()]

    def insert(self, collection: str, doc_id: str, body: str) -> None:
        self._execute(
            f"INSERT INTO {self.table} (collection, doc_id, body, version) "
            "VALUES (:collection, :doc_id, :body, 0)",
            {"collection": collection, "doc_id": doc_id, "body": body},
        )

    def compare_and_set(self, collection: str, doc_id: str, version: int, body: str) -> int:
        """
        Replace the body only if the row is still at ``version``.

        Returns:
            1 if the body was written (version incremented), 0 if the row
            changed or disappeared since it was read
        """
        result = self._execute(
            f"UPDATE {self.table} SET body = :body, version = version + 1 "
            "WHERE collection = :collection AND doc_id = :doc_id AND version = :version",
            {"collection": collection, "doc_id": doc_id, "version": version, "body": body},
        )
        return int(result.rowcount)

    def delete(self, collection: str, doc_id: str) -> int:
        result = self._execute(
            f"DELETE FROM {self.table} WHERE collection = :collection AND doc_id = :doc_id",
            {"collection": collection, "doc_id": doc_id},
        )
        return int(result.rowcount)
