"""
Low-stock live view.

Watches the products collection and keeps the subset of records with
0 < currentStock < minStockAlert, rebuilt from every full snapshot.
Records at zero stock are out of stock and never part of the view.

Consumers either read `view` / `records` at any time or iterate `updates()`,
an async channel of LowStockView items that ends after a single
FeedUnavailable signal or when the filter is closed.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, List, Optional, Union

from pydantic import ValidationError

from grocer_core.models.inventory import (
    FeedState,
    FeedUnavailable,
    InventoryRecord,
    LowStockView,
)
from grocer_core.store.base import DocumentStore, utcnow

logger = logging.getLogger(__name__)

_CLOSED = object()

FeedItem = Union[LowStockView, FeedUnavailable]


def derive_low_stock(snapshot: List[dict]) -> List[InventoryRecord]:
    """Low-stock records of a snapshot, in snapshot order."""
    low = []
    for doc in snapshot:
        try:
            record = InventoryRecord.model_validate(doc)
        except ValidationError as exc:
            logger.warning(
                "Skipping product %s with unreadable stock fields: %s",
                doc.get("id"), exc.errors()[0]["msg"],
            )
            continue
        if record.is_low_stock:
            low.append(record)
    return low


class LowStockFilter:
    """
    Derived low-stock view over a live product feed.

    States:
      PENDING → LIVE → (UNAVAILABLE | CLOSED)
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "products",
        loop: Optional[asyncio.AbstractEventLoop] = None,
        buffer_size: int = 16,
    ):
        self.store = store
        self.collection = collection
        self._loop = loop
        self._buffer_size = buffer_size
        self._state = FeedState.CLOSED
        self._view: Optional[LowStockView] = None
        self._failure: Optional[FeedUnavailable] = None
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def view(self) -> Optional[LowStockView]:
        """Latest derived view; None before the first snapshot or after failure."""
        return self._view

    @property
    def records(self) -> List[InventoryRecord]:
        return list(self._view.records) if self._view else []

    @property
    def failure(self) -> Optional[FeedUnavailable]:
        return self._failure

    def open(self) -> "LowStockFilter":
        """Subscribe to the feed. A no-op while already subscribed."""
        if self._unsubscribe is not None:
            return self

        self._state = FeedState.PENDING
        self._view = None
        self._failure = None
        self._queue = asyncio.Queue(maxsize=self._buffer_size)

        unsubscribe = self.store.subscribe(
            self.collection, self._on_snapshot, self._on_error
        )
        if self._state == FeedState.UNAVAILABLE:
            # Feed failed while delivering the first snapshot
            unsubscribe()
        else:
            self._unsubscribe = unsubscribe
        return self

    def close(self) -> None:
        """Unsubscribe and end the update channel. Safe to call repeatedly."""
        self._release()
        if self._state == FeedState.CLOSED:
            return
        failed = self._state == FeedState.UNAVAILABLE
        self._state = FeedState.CLOSED
        self._view = None
        if failed:
            # Channel already ended by FeedUnavailable
            return
        self._publish(_CLOSED)

    def __enter__(self) -> "LowStockFilter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def updates(self) -> AsyncIterator[FeedItem]:
        """Yield each derived view until the feed fails or the filter closes."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if isinstance(item, FeedUnavailable):
                return

    def _on_snapshot(self, snapshot: List[dict]) -> None:
        if self._state not in (FeedState.PENDING, FeedState.LIVE):
            return
        self._view = LowStockView(
            records=derive_low_stock(snapshot),
            snapshot_size=len(snapshot),
            derived_at=utcnow(),
        )
        self._state = FeedState.LIVE
        self._publish(self._view)

    def _on_error(self, error: Exception) -> None:
        if self._state not in (FeedState.PENDING, FeedState.LIVE):
            return
        logger.error("Product feed %s unavailable: %s", self.collection, error)
        self._state = FeedState.UNAVAILABLE
        self._view = None
        self._failure = FeedUnavailable(reason=str(error), failed_at=utcnow())
        self._release()
        self._publish(self._failure)

    def _release(self) -> None:
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()

    def _publish(self, item) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._enqueue, item)
        else:
            self._enqueue(item)

    def _enqueue(self, item) -> None:
        # Oldest views go first; a terminal item is always the newest
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)
