"""Inventory records and the derived low-stock view."""

from datetime import datetime
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field


class InventoryRecord(BaseModel):
    """A product document, reduced to the fields stock alerting reads."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Any                      # Opaque, assigned by the store
    current_stock: int = Field(alias="currentStock", ge=0)
    min_stock_alert: int = Field(alias="minStockAlert", ge=0)

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.current_stock < self.min_stock_alert

    @property
    def is_out_of_stock(self) -> bool:
        return self.current_stock == 0


class FeedState(str, Enum):
    PENDING = "pending"          # Opened, no snapshot received yet
    LIVE = "live"
    UNAVAILABLE = "unavailable"  # Upstream failed; terminal
    CLOSED = "closed"


class LowStockView(BaseModel):
    """One derived view, recomputed in full from a single snapshot."""

    records: List[InventoryRecord]
    snapshot_size: int
    derived_at: datetime

    @property
    def count(self) -> int:
        return len(self.records)


class FeedUnavailable(BaseModel):
    """Terminal signal: the upstream feed failed and no more views follow."""

    reason: str
    failed_at: datetime
