"""Reconciler configuration, transition policy and pass reports."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from grocer_core.models.orders import LIFECYCLE_RANK, OrderStatus


class TransitionRule(BaseModel):
    """Advance `from_status` to `to_status` once `after_minutes` have elapsed
    since the record's `since_field` timestamp."""

    from_status: OrderStatus
    to_status: OrderStatus
    after_minutes: float = Field(ge=0)
    since_field: str = "updatedAt"

    @model_validator(mode="after")
    def _forward_only(self) -> "TransitionRule":
        if self.from_status.is_terminal:
            raise ValueError(f"cannot transition out of terminal status {self.from_status.value}")
        if self.to_status == OrderStatus.CANCELLED:
            raise ValueError("cancellation is never applied automatically")
        if LIFECYCLE_RANK[self.to_status] <= LIFECYCLE_RANK[self.from_status]:
            raise ValueError(
                f"{self.from_status.value} -> {self.to_status.value} does not move forward"
            )
        return self


class StatusPolicy(BaseModel):
    """Table of time-based transitions, at most one per source status."""

    rules: List[TransitionRule] = []

    @field_validator("rules")
    @classmethod
    def _one_rule_per_status(cls, rules: List[TransitionRule]) -> List[TransitionRule]:
        seen = set()
        for rule in rules:
            if rule.from_status in seen:
                raise ValueError(f"duplicate rule for {rule.from_status.value}")
            seen.add(rule.from_status)
        return rules

    def rule_for(self, status: OrderStatus) -> Optional[TransitionRule]:
        return next((r for r in self.rules if r.from_status == status), None)


class ReconcilerConfig(BaseModel):
    """Configuration for the Reconciler Loop."""

    interval_minutes: int = Field(default=30, gt=0)
    order_collections: List[str] = ["orders", "deliveryAssignments"]
    slider_collection: Optional[str] = "sliders"
    order_policy: StatusPolicy = StatusPolicy()

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0


class StatusUpdate(BaseModel):
    collection: str
    record_id: str
    from_status: Optional[str]
    to_status: str


class PassReport(BaseModel):
    """Outcome of one reconciliation pass."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    candidates: int = 0
    updates: List[StatusUpdate] = []
    skipped: int = 0
    read_failures: int = 0
    write_failures: int = 0

    @property
    def updated(self) -> int:
        return len(self.updates)
