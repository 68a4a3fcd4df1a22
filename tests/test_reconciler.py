"""Tests for the Reconciler Loop."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from grocer_core.errors import RecordReadFailure, RecordWriteFailure, RuleEvaluationError
from grocer_core.models.orders import SliderStatus
from grocer_core.models.reconciler import ReconcilerConfig, StatusPolicy, TransitionRule
from grocer_core.reconciler.loop import ReconcilerLoop
from grocer_core.store.memory import InMemoryDocumentStore

T0 = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FlakyStore(InMemoryDocumentStore):
    """Fails writes for some ids and reads for some collections."""

    def __init__(self, clock, failing_ids=(), failing_collections=()):
        super().__init__(clock=clock)
        self.failing_ids = set(failing_ids)
        self.failing_collections = set(failing_collections)
        self.reads = []
        self.writes = []

    async def read_many(self, collection, predicate=None):
        self.reads.append(collection)
        if collection in self.failing_collections:
            raise RecordReadFailure(f"{collection} unavailable")
        return await super().read_many(collection, predicate)

    async def write_fields(self, collection, record_id, fields):
        self.writes.append(record_id)
        if record_id in self.failing_ids:
            raise RecordWriteFailure(collection, record_id, "deadline exceeded")
        await super().write_fields(collection, record_id, fields)


class FastConfig(ReconcilerConfig):
    @property
    def interval_seconds(self) -> float:
        return 0.01


def _config(**kwargs) -> ReconcilerConfig:
    policy = StatusPolicy(rules=[
        TransitionRule(from_status="placed", to_status="confirmed", after_minutes=10),
        TransitionRule(
            from_status="out-for-delivery",
            to_status="delivered",
            after_minutes=90,
        ),
    ])
    return ReconcilerConfig(order_policy=policy, **kwargs)


class TestReconcileOnce:
    def setup_method(self):
        self.clock = FakeClock(T0)
        self.store = FlakyStore(clock=self.clock)
        self.reconciler = ReconcilerLoop(store=self.store, config=_config())

    def _order(self, record_id, status, minutes_ago, collection="orders"):
        self.store.add(collection, {
            "status": status,
            "createdAt": self.clock.now - timedelta(minutes=minutes_ago),
            "updatedAt": self.clock.now - timedelta(minutes=minutes_ago),
        }, record_id=record_id)

    def test_auto_deliver(self):
        """Out for delivery past the threshold becomes delivered, stamped now."""
        self._order("o1", "out-for-delivery", minutes_ago=90)

        report = asyncio.run(self.reconciler.reconcile_once())

        order = self.store.get("orders", "o1")
        assert order["status"] == "delivered"
        assert order["deliveredAt"] == T0
        assert order["updatedAt"] == T0
        assert report.updated == 1
        assert report.updates[0].from_status == "out-for-delivery"
        assert report.updates[0].to_status == "delivered"

    def test_delivered_records_are_not_candidates(self):
        self._order("o2", "delivered", minutes_ago=500)
        self._order("o3", "cancelled", minutes_ago=500)

        report = asyncio.run(self.reconciler.reconcile_once())

        assert report.candidates == 0
        assert self.store.writes == []
        assert self.store.get("orders", "o2")["status"] == "delivered"
        assert self.store.get("orders", "o3")["status"] == "cancelled"

    def test_second_pass_writes_nothing(self):
        self._order("o1", "out-for-delivery", minutes_ago=95)
        self._order("o4", "placed", minutes_ago=11)
        self._order("o5", "placed", minutes_ago=2)

        first = asyncio.run(self.reconciler.reconcile_once())
        second = asyncio.run(self.reconciler.reconcile_once())

        assert first.updated == 2
        assert second.updated == 0
        assert len(self.store.writes) == 2

    def test_one_step_per_pass(self):
        """A confirmed order reached this pass waits for the next threshold."""
        self._order("o4", "placed", minutes_ago=1000)
        policy = StatusPolicy(rules=[
            TransitionRule(from_status="placed", to_status="confirmed", after_minutes=10),
            TransitionRule(from_status="confirmed", to_status="packed", after_minutes=10),
        ])
        reconciler = ReconcilerLoop(store=self.store, config=ReconcilerConfig(order_policy=policy))

        asyncio.run(reconciler.reconcile_once())
        assert self.store.get("orders", "o4")["status"] == "confirmed"

        self.clock.advance(minutes=10)
        asyncio.run(reconciler.reconcile_once())
        assert self.store.get("orders", "o4")["status"] == "packed"

    def test_write_failure_does_not_abort_pass(self):
        store = FlakyStore(clock=self.clock, failing_ids={"bad"})
        for record_id in ("a", "bad", "c"):
            store.add("orders", {
                "status": "out-for-delivery",
                "updatedAt": T0 - timedelta(hours=3),
            }, record_id=record_id)
        reconciler = ReconcilerLoop(store=store, config=_config())

        report = asyncio.run(reconciler.reconcile_once())

        assert report.write_failures == 1
        assert [u.record_id for u in report.updates] == ["a", "c"]
        assert store.get("orders", "bad")["status"] == "out-for-delivery"

    def test_read_failure_skips_only_that_collection(self):
        store = FlakyStore(clock=self.clock, failing_collections={"orders"})
        store.add("deliveryAssignments", {
            "status": "out-for-delivery",
            "updatedAt": T0 - timedelta(hours=2),
        }, record_id="d1")
        reconciler = ReconcilerLoop(store=store, config=_config())

        report = asyncio.run(reconciler.reconcile_once())

        assert report.read_failures == 1
        assert store.get("deliveryAssignments", "d1")["status"] == "delivered"
        assert store.reads == ["orders", "deliveryAssignments", "sliders"]

    def test_pending_orders_reconciled(self):
        policy = StatusPolicy(rules=[
            TransitionRule(from_status="pending", to_status="confirmed", after_minutes=10),
        ])
        reconciler = ReconcilerLoop(store=self.store, config=ReconcilerConfig(order_policy=policy))
        self.store.add("orders", {"status": "pending", "updatedAt": "2020-01-01T00:00:00"}, record_id="o1")

        report = asyncio.run(reconciler.reconcile_once())

        assert report.skipped == 0
        assert report.updated == 1
        assert self.store.get("orders", "o1")["status"] == "confirmed"

    def test_unrecognized_status_is_skipped(self):
        self.store.add("orders", {"status": "teleported", "updatedAt": T0}, record_id="x")
        self._order("o1", "out-for-delivery", minutes_ago=120)

        report = asyncio.run(self.reconciler.reconcile_once())

        assert report.skipped == 1
        assert report.updated == 1
        assert self.store.get("orders", "x")["status"] == "teleported"

    def test_slider_statuses_follow_schedule(self):
        self.store.add("sliders", {
            "publishType": "scheduled",
            "status": "upcoming",
            "startDate": T0 - timedelta(hours=1),
            "endDate": T0 + timedelta(days=3),
        }, record_id="s1")
        self.store.add("sliders", {
            "publishType": "draft",
            "status": "upcoming",
            "startDate": T0 - timedelta(days=5),
            "endDate": T0 - timedelta(days=1),
        }, record_id="s2")

        asyncio.run(self.reconciler.reconcile_once())

        assert self.store.get("sliders", "s1")["status"] == "active"
        assert self.store.get("sliders", "s2")["status"] == "upcoming"

    def test_last_report_recorded(self):
        asyncio.run(self.reconciler.reconcile_once())
        assert self.reconciler.passes_completed == 1
        assert self.reconciler.last_report.started_at == T0


class TestPublishDraft:
    def setup_method(self):
        self.clock = FakeClock(T0)
        self.store = InMemoryDocumentStore(clock=self.clock)
        self.reconciler = ReconcilerLoop(store=self.store)

    def test_publish_draft(self):
        self.store.add("sliders", {
            "publishType": "draft",
            "startDate": T0 + timedelta(days=1),
            "endDate": T0 + timedelta(days=2),
        }, record_id="s1")

        status = asyncio.run(self.reconciler.publish_draft("s1"))

        slider = self.store.get("sliders", "s1")
        assert status == SliderStatus.UPCOMING
        assert slider["publishType"] == "scheduled"
        assert slider["status"] == "upcoming"

    def test_publish_errors(self):
        self.store.add("sliders", {"publishType": "scheduled"}, record_id="live")
        self.store.add("sliders", {"publishType": "draft"}, record_id="undated")

        with pytest.raises(RecordReadFailure):
            asyncio.run(self.reconciler.publish_draft("missing"))
        with pytest.raises(RuleEvaluationError):
            asyncio.run(self.reconciler.publish_draft("live"))
        with pytest.raises(RuleEvaluationError):
            asyncio.run(self.reconciler.publish_draft("undated"))


class TestReconcilerLifecycle:
    def setup_method(self):
        self.clock = FakeClock(T0)
        self.store = FlakyStore(clock=self.clock)

    def test_start_runs_first_pass_and_stop_is_idempotent(self):
        reconciler = ReconcilerLoop(store=self.store, config=_config())

        async def scenario():
            handle = reconciler.start()
            assert reconciler.start() is handle
            assert reconciler.status == "running"
            await asyncio.sleep(0.05)
            await handle.stop()
            await handle.stop()
            return handle

        handle = asyncio.run(scenario())

        assert not handle.running
        assert reconciler.status == "stopped"
        assert reconciler.passes_completed == 1

    def test_no_reads_after_stop(self):
        reconciler = ReconcilerLoop(store=self.store, config=FastConfig())

        async def scenario():
            handle = reconciler.start()
            await asyncio.sleep(0.05)
            await handle.stop()
            reads_at_stop = len(self.store.reads)
            await asyncio.sleep(0.05)
            return reads_at_stop

        reads_at_stop = asyncio.run(scenario())

        assert reconciler.passes_completed >= 2
        assert len(self.store.reads) == reads_at_stop

    def test_failing_pass_keeps_schedule(self):
        reconciler = ReconcilerLoop(store=self.store, config=FastConfig())
        calls = []
        original = reconciler.reconcile_once

        async def flaky_pass(now=None):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("store client crashed")
            return await original(now)

        reconciler.reconcile_once = flaky_pass

        async def scenario():
            handle = reconciler.start()
            await asyncio.sleep(0.1)
            await handle.stop()

        asyncio.run(scenario())

        assert len(calls) >= 2
        assert reconciler.passes_completed >= 1

    def test_restart_after_stop(self):
        reconciler = ReconcilerLoop(store=self.store, config=_config())

        async def scenario():
            first = reconciler.start()
            await asyncio.sleep(0.02)
            await first.stop()
            second = reconciler.start()
            await asyncio.sleep(0.02)
            await second.stop()
            return first, second

        first, second = asyncio.run(scenario())

        assert first is not second
        assert reconciler.passes_completed == 2
