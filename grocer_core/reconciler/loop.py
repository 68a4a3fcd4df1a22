"""
Reconciler Loop — periodic status reconciliation.

Every interval the loop reads the records each target still considers live,
evaluates the target's rule against the current time and writes back only
the statuses that changed.

Failure containment:
  - a failed read skips that target for this pass
  - a record whose rule cannot be evaluated is skipped and not written
  - a failed write is logged; the remaining records are still processed
  - a failed pass never stops the schedule; the next tick starts fresh
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from grocer_core.errors import RecordReadFailure, RuleEvaluationError
from grocer_core.models.orders import (
    DRAFT_PUBLISH_TYPE,
    SCHEDULED_PUBLISH_TYPE,
    SliderStatus,
)
from grocer_core.models.reconciler import PassReport, ReconcilerConfig, StatusUpdate
from grocer_core.reconciler.rules import (
    OrderLifecycleRule,
    SliderScheduleRule,
    StatusRule,
    parse_timestamp,
    slider_status_at,
)
from grocer_core.store.base import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)


class ReconcileTarget:
    """A collection paired with the rule that governs its records."""

    def __init__(self, collection: str, rule: StatusRule):
        self.collection = collection
        self.rule = rule

    def __repr__(self) -> str:
        return f"ReconcileTarget({self.collection!r}, {type(self.rule).__name__})"


def default_targets(config: ReconcilerConfig) -> List[ReconcileTarget]:
    order_rule = OrderLifecycleRule(config.order_policy)
    targets = [ReconcileTarget(c, order_rule) for c in config.order_collections]
    if config.slider_collection:
        targets.append(ReconcileTarget(config.slider_collection, SliderScheduleRule()))
    return targets


class ReconcilerHandle:
    """Owner's handle on a running loop. `stop()` is idempotent."""

    def __init__(self, task: asyncio.Task, stop_event: asyncio.Event):
        self._task = task
        self._stop_event = stop_event

    @property
    def running(self) -> bool:
        return not self._task.done()

    async def stop(self) -> None:
        """Stop scheduling. A pass already in progress runs to completion."""
        self._stop_event.set()
        if not self._task.done():
            await self._task


class ReconcilerLoop:
    """
    The Reconciler Loop.

    States:
      IDLE → PASS (read → evaluate → write) → WAIT(interval) → PASS ... → STOPPED
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[ReconcilerConfig] = None,
        targets: Optional[List[ReconcileTarget]] = None,
    ):
        self.store = store
        self.config = config or ReconcilerConfig()
        self.targets = targets if targets is not None else default_targets(self.config)

        self._running = False
        self._handle: Optional[ReconcilerHandle] = None
        self._last_report: Optional[PassReport] = None
        self._passes_completed = 0

    @property
    def status(self) -> str:
        """Current reconciler status."""
        if self._running or (self._handle is not None and self._handle.running):
            return "running"
        return "stopped"

    @property
    def last_report(self) -> Optional[PassReport]:
        return self._last_report

    @property
    def passes_completed(self) -> int:
        return self._passes_completed

    async def reconcile_once(self, now: Optional[datetime] = None) -> PassReport:
        """
        Run a single reconciliation pass.
        Returns a report of candidates seen, updates written and failures.
        """
        if now is None:
            now = self.store.now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        report = PassReport(started_at=now)

        for target in self.targets:
            try:
                records = await self.store.read_many(
                    target.collection, target.rule.is_candidate
                )
            except Exception as exc:
                report.read_failures += 1
                logger.error("Reading %s failed, skipping this pass: %s", target.collection, exc)
                continue

            report.candidates += len(records)
            for record in records:
                await self._reconcile_record(target, record, now, report)

        report.finished_at = self.store.now()
        self._last_report = report
        self._passes_completed += 1
        logger.info(
            "Reconciliation pass: %d candidates, %d updated, %d skipped, %d failed",
            report.candidates, report.updated, report.skipped,
            report.read_failures + report.write_failures,
        )
        return report

    async def _reconcile_record(
        self,
        target: ReconcileTarget,
        record: dict,
        now: datetime,
        report: PassReport,
    ) -> None:
        record_id = str(record.get("id"))
        try:
            update = target.rule.evaluate(record, now)
        except RuleEvaluationError as exc:
            report.skipped += 1
            logger.warning("Skipping %s/%s: %s", target.collection, record_id, exc.reason)
            return

        if not update:
            return

        try:
            await self.store.write_fields(target.collection, record_id, update)
        except Exception as exc:
            report.write_failures += 1
            logger.error("Updating %s/%s failed: %s", target.collection, record_id, exc)
            return

        report.updates.append(StatusUpdate(
            collection=target.collection,
            record_id=record_id,
            from_status=record.get("status"),
            to_status=update["status"],
        ))
        logger.info(
            "Updated %s/%s from %s to %s",
            target.collection, record_id, record.get("status"), update["status"],
        )

    async def publish_draft(self, slider_id: str) -> SliderStatus:
        """Publish a draft slider as scheduled, with its status for today."""
        collection = self.config.slider_collection or "sliders"
        slider = self.store.get(collection, slider_id)
        if slider is None:
            raise RecordReadFailure(f"slider {slider_id} not found")
        if slider.get("publishType") != DRAFT_PUBLISH_TYPE:
            raise RuleEvaluationError(slider_id, "slider is not a draft")

        start = parse_timestamp(slider.get("startDate"), slider_id, "startDate")
        end = parse_timestamp(slider.get("endDate"), slider_id, "endDate")
        new_status = slider_status_at(start, end, self.store.now())

        await self.store.write_fields(collection, slider_id, {
            "publishType": SCHEDULED_PUBLISH_TYPE,
            "status": new_status.value,
            "updatedAt": SERVER_TIMESTAMP,
        })
        logger.info("Draft slider %s published as %s", slider_id, new_status.value)
        return new_status

    def start(self) -> ReconcilerHandle:
        """
        Start the recurring loop on the running event loop.
        Returns the existing handle if the loop is already running.
        """
        if self._handle is not None and self._handle.running:
            return self._handle

        stop_event = asyncio.Event()
        task = asyncio.get_running_loop().create_task(self.run_async(stop_event))
        self._handle = ReconcilerHandle(task, stop_event)
        logger.info("Auto status updates started (every %d minutes)", self.config.interval_minutes)
        return self._handle

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the reconciler loop asynchronously."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                try:
                    await self.reconcile_once()
                except Exception:
                    logger.exception("Reconciliation pass failed")
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
