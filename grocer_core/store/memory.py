"""
In-memory document store.
Stands in for the hosted document database in tests and local runs.
"""

import copy
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from grocer_core.errors import RecordReadFailure, RecordWriteFailure
from grocer_core.store.base import DocumentStore, RecordPredicate


class InMemoryDocumentStore(DocumentStore):
    """Collections of dict documents, kept in insertion order."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        super().__init__(clock=clock)
        self._collections: Dict[str, Dict[str, dict]] = {}

    def _snapshot(self, collection: str) -> List[dict]:
        return [
            {"id": record_id, **doc}
            for record_id, doc in self._collections.get(collection, {}).items()
        ]

    async def read_many(
        self, collection: str, predicate: Optional[RecordPredicate] = None
    ) -> List[dict]:
        records = self._snapshot(collection)
        if predicate is None:
            return copy.deepcopy(records)
        try:
            return copy.deepcopy([r for r in records if predicate(r)])
        except Exception as exc:
            raise RecordReadFailure(f"query on {collection} failed: {exc}") from exc

    async def write_fields(self, collection: str, record_id: str, fields: dict) -> None:
        doc = self._collections.get(collection, {}).get(record_id)
        if doc is None:
            raise RecordWriteFailure(collection, record_id, "document not found")
        doc.update(self._resolve_fields(fields))
        self._notify(collection)

    def add(self, collection: str, fields: dict, record_id: Optional[str] = None) -> str:
        """Create a document; the store assigns the id unless one is given."""
        record_id = record_id or uuid4().hex[:20]
        doc = self._resolve_fields({k: v for k, v in fields.items() if k != "id"})
        self._collections.setdefault(collection, {})[record_id] = doc
        self._notify(collection)
        return record_id

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        doc = self._collections.get(collection, {}).get(record_id)
        if doc is None:
            return None
        return {"id": record_id, **copy.deepcopy(doc)}

    def delete(self, collection: str, record_id: str) -> bool:
        """Remove a document from a collection."""
        if record_id in self._collections.get(collection, {}):
            del self._collections[collection][record_id]
            self._notify(collection)
            return True
        return False
