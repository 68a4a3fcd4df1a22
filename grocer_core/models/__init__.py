"""grocer_core data models."""

from grocer_core.models.inventory import (
    FeedState,
    FeedUnavailable,
    InventoryRecord,
    LowStockView,
)
from grocer_core.models.orders import (
    LIFECYCLE_RANK,
    TERMINAL_STATUSES,
    OrderStatus,
    SliderStatus,
)
from grocer_core.models.reconciler import (
    PassReport,
    ReconcilerConfig,
    StatusPolicy,
    StatusUpdate,
    TransitionRule,
)

__all__ = [
    "FeedState",
    "FeedUnavailable",
    "InventoryRecord",
    "LIFECYCLE_RANK",
    "LowStockView",
    "OrderStatus",
    "PassReport",
    "ReconcilerConfig",
    "SliderStatus",
    "StatusPolicy",
    "StatusUpdate",
    "TERMINAL_STATUSES",
    "TransitionRule",
]
