"""Order / delivery lifecycle and slider scheduling states."""

from enum import Enum
from typing import Dict


class OrderStatus(str, Enum):
    """Lifecycle shared by orders and delivery assignments."""

    PLACED = "placed"
    PENDING = "pending"      # Same stage as placed
    CONFIRMED = "confirmed"
    PACKED = "packed"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Position along the forward (non-cancelled) path.
LIFECYCLE_RANK: Dict[OrderStatus, int] = {
    OrderStatus.PLACED: 0,
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PACKED: 2,
    OrderStatus.OUT_FOR_DELIVERY: 3,
    OrderStatus.DELIVERED: 4,
}


class SliderStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    EXPIRED = "expired"


DRAFT_PUBLISH_TYPE = "draft"
SCHEDULED_PUBLISH_TYPE = "scheduled"
