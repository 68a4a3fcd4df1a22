"""
Status rules evaluated by the Reconciler Loop.

A rule picks its candidates from a collection and maps one record, plus the
current time, to an optional field update. Rules hold no state between
passes, so evaluating an unchanged record twice gives the same answer.
"""

from datetime import datetime, timezone
from typing import Optional

from grocer_core.errors import RuleEvaluationError
from grocer_core.models.orders import (
    DRAFT_PUBLISH_TYPE,
    OrderStatus,
    SliderStatus,
)
from grocer_core.models.reconciler import StatusPolicy
from grocer_core.store.base import SERVER_TIMESTAMP


def parse_timestamp(value, record_id: str, field: str) -> datetime:
    """Read a stored timestamp. Naive values are taken as UTC."""
    if value is None:
        raise RuleEvaluationError(record_id, f"missing {field}")
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise RuleEvaluationError(record_id, f"unreadable {field}: {value!r}")
    if not isinstance(value, datetime):
        raise RuleEvaluationError(record_id, f"unreadable {field}: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class StatusRule:
    """Interface shared by all reconciler rules."""

    def is_candidate(self, record: dict) -> bool:
        raise NotImplementedError

    def evaluate(self, record: dict, now: datetime) -> Optional[dict]:
        raise NotImplementedError


class OrderLifecycleRule(StatusRule):
    """
    Time-based forward transitions for orders and delivery assignments.
    Terminal records (delivered, cancelled) are never candidates.
    """

    def __init__(self, policy: Optional[StatusPolicy] = None):
        self.policy = policy or StatusPolicy()

    def is_candidate(self, record: dict) -> bool:
        try:
            return not OrderStatus(record.get("status")).is_terminal
        except ValueError:
            # Unknown statuses reach evaluate() and are reported there
            return True

    def evaluate(self, record: dict, now: datetime) -> Optional[dict]:
        record_id = str(record.get("id"))
        try:
            status = OrderStatus(record.get("status"))
        except ValueError:
            raise RuleEvaluationError(record_id, f"unknown status {record.get('status')!r}")

        if status.is_terminal:
            return None

        rule = self.policy.rule_for(status)
        if rule is None:
            return None

        since = parse_timestamp(record.get(rule.since_field), record_id, rule.since_field)
        elapsed_minutes = (now - since).total_seconds() / 60.0
        if elapsed_minutes < rule.after_minutes:
            return None

        update = {"status": rule.to_status.value, "updatedAt": SERVER_TIMESTAMP}
        if rule.to_status == OrderStatus.DELIVERED:
            update["deliveredAt"] = SERVER_TIMESTAMP
        return update


def slider_status_at(start: datetime, end: datetime, now: datetime) -> SliderStatus:
    """Where `now` falls in a slider's publishing window."""
    if now < start:
        return SliderStatus.UPCOMING
    if now <= end:
        return SliderStatus.ACTIVE
    return SliderStatus.EXPIRED


class SliderScheduleRule(StatusRule):
    """Keeps scheduled promo sliders upcoming / active / expired by date."""

    def is_candidate(self, record: dict) -> bool:
        return record.get("publishType") not in (None, DRAFT_PUBLISH_TYPE)

    def evaluate(self, record: dict, now: datetime) -> Optional[dict]:
        record_id = str(record.get("id"))
        start = parse_timestamp(record.get("startDate"), record_id, "startDate")
        end = parse_timestamp(record.get("endDate"), record_id, "endDate")

        new_status = slider_status_at(start, end, now)
        if record.get("status") == new_status.value:
            return None
        return {"status": new_status.value, "updatedAt": SERVER_TIMESTAMP}
