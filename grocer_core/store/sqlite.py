"""
SQLite Document Store — JSON documents keyed by (collection, id).

Single-process persistence for the dashboard core. Subscriptions fire on
writes made through this store instance only.
"""

import json
import sqlite3
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from grocer_core.errors import (
    RecordReadFailure,
    RecordWriteFailure,
    SubscriptionFailure,
)
from grocer_core.store.base import DocumentStore, RecordPredicate


def _encode(value):
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class SQLiteDocumentStore(DocumentStore):
    """
    Document store backed by SQLite.
    Timestamps are persisted as ISO-8601 strings.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(clock=clock)
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the documents table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                UNIQUE (collection, id)
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_collection
            ON documents(collection)
        """)
        self._conn.commit()

    def _snapshot(self, collection: str) -> List[dict]:
        rows = self._conn.execute(
            "SELECT id, data FROM documents WHERE collection = ? ORDER BY seq",
            (collection,),
        ).fetchall()
        return [{"id": row["id"], **json.loads(row["data"])} for row in rows]

    async def read_many(
        self, collection: str, predicate: Optional[RecordPredicate] = None
    ) -> List[dict]:
        try:
            records = self._snapshot(collection)
            if predicate is None:
                return records
            return [r for r in records if predicate(r)]
        except (sqlite3.Error, ValueError, TypeError, KeyError) as exc:
            raise RecordReadFailure(f"query on {collection} failed: {exc}") from exc

    async def write_fields(self, collection: str, record_id: str, fields: dict) -> None:
        try:
            row = self._conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, record_id),
            ).fetchone()
            if row is None:
                raise RecordWriteFailure(collection, record_id, "document not found")
            doc = json.loads(row["data"])
            doc.update(self._resolve_fields(fields))
            self._conn.execute(
                "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                (json.dumps(doc, default=_encode), collection, record_id),
            )
            self._conn.commit()
        except (sqlite3.Error, TypeError) as exc:
            raise RecordWriteFailure(collection, record_id, str(exc)) from exc
        self._notify(collection)

    def add(self, collection: str, fields: dict, record_id: Optional[str] = None) -> str:
        """Create a document; the store assigns the id unless one is given."""
        record_id = record_id or uuid4().hex[:20]
        doc = self._resolve_fields({k: v for k, v in fields.items() if k != "id"})
        self._conn.execute(
            "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
            (collection, record_id, json.dumps(doc, default=_encode)),
        )
        self._conn.commit()
        self._notify(collection)
        return record_id

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, record_id),
        ).fetchone()
        if row is None:
            return None
        return {"id": record_id, **json.loads(row["data"])}

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        row = self._conn.execute(
            "SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,)
        ).fetchone()
        return row[0]

    def close(self) -> None:
        """End all open feeds and close the database connection."""
        for collection in list(self._listeners):
            self.terminate_subscriptions(
                collection, SubscriptionFailure("document store closed")
            )
        self._conn.close()
