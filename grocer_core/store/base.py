"""
Document Store — the narrow contract the filter and the reconciler depend on.

Operations:
- subscribe(collection, on_snapshot, on_error) -> unsubscribe
- read_many(collection, predicate) -> records        (async)
- write_fields(collection, record_id, fields)        (async)

Every snapshot is the full, current list of documents in the collection, each
a plain dict carrying its `id`. Fields set to SERVER_TIMESTAMP are replaced
with the store's own clock when the write is applied.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from grocer_core.errors import SubscriptionFailure

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[dict]], None]
ErrorCallback = Callable[[Exception], None]
RecordPredicate = Callable[[dict], bool]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore:
    """
    Base store: owns listener bookkeeping and snapshot fan-out.
    Subclasses provide storage through `_snapshot`, `read_many`,
    `write_fields`, `add` and `get`.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utcnow
        self._listeners: Dict[str, Dict[str, Tuple[SnapshotCallback, ErrorCallback]]] = {}

    def now(self) -> datetime:
        return self._clock()

    # --- Subscriptions ---

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Callable[[], None]:
        """Watch a collection. The current snapshot is delivered immediately."""
        token = uuid4().hex
        self._listeners.setdefault(collection, {})[token] = (on_snapshot, on_error)

        def unsubscribe() -> None:
            self._listeners.get(collection, {}).pop(token, None)

        self._deliver(collection, {token: (on_snapshot, on_error)})
        return unsubscribe

    def listener_count(self, collection: str) -> int:
        return len(self._listeners.get(collection, {}))

    def terminate_subscriptions(self, collection: str, error: Exception) -> None:
        """End every feed on a collection with an error and drop its listeners."""
        listeners = self._listeners.pop(collection, {})
        for _, on_error in listeners.values():
            on_error(error)

    def _notify(self, collection: str) -> None:
        listeners = self._listeners.get(collection)
        if listeners:
            self._deliver(collection, dict(listeners))

    def _deliver(
        self,
        collection: str,
        listeners: Dict[str, Tuple[SnapshotCallback, ErrorCallback]],
    ) -> None:
        try:
            snapshot = self._snapshot(collection)
        except Exception as exc:
            failure = SubscriptionFailure(f"snapshot of {collection} failed: {exc}")
            for token, (_, on_error) in listeners.items():
                self._listeners.get(collection, {}).pop(token, None)
                on_error(failure)
            return

        for on_snapshot, _ in listeners.values():
            try:
                on_snapshot(copy.deepcopy(snapshot))
            except Exception:
                logger.exception("Snapshot listener on %s raised", collection)

    def _resolve_fields(self, fields: dict) -> dict:
        now = self.now()
        return {
            key: (now if value is SERVER_TIMESTAMP else value)
            for key, value in fields.items()
        }

    # --- Storage (implemented by subclasses) ---

    def _snapshot(self, collection: str) -> List[dict]:
        raise NotImplementedError

    async def read_many(
        self, collection: str, predicate: Optional[RecordPredicate] = None
    ) -> List[dict]:
        raise NotImplementedError

    async def write_fields(self, collection: str, record_id: str, fields: dict) -> None:
        raise NotImplementedError

    def add(self, collection: str, fields: dict, record_id: Optional[str] = None) -> str:
        raise NotImplementedError

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        raise NotImplementedError
