"""
Tests for the retention sweeper.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from lifecycle_toolkit.audit_trail import LifecycleAction, MemoryEventSink
from lifecycle_toolkit.config import LifecycleConfig
from lifecycle_toolkit.soft_delete import (
    LifecycleOperator,
    MemoryEntityStore,
    NotConfiguredError,
    RetentionPolicy,
    RetentionSweeper,
    default_registry,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    store = MemoryEntityStore(default_registry().entity_types())
    old = NOW - timedelta(days=60)
    recent = NOW - timedelta(days=5)

    store.insert("project", {"id": 1, "workspace_id": 1, "deleted_at": old})
    store.insert("project", {"id": 2, "workspace_id": 1, "deleted_at": recent})
    store.insert("project", {"id": 3, "workspace_id": 1})
    for i in range(1, 6):
        store.insert("task", {"id": i, "project_id": 1, "deleted_at": old})
    store.insert("task", {"id": 6, "project_id": 3})
    store.insert("comment", {"id": 1, "task_id": 1, "deleted_at": old})
    return store


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def operator(store, sink):
    return LifecycleOperator(
        store,
        sink=sink,
        config=LifecycleConfig(
            environment="test", default_retention_days=30, cleanup_batch_size=2
        ),
        clock=lambda: NOW,
    )


class TestRetentionPolicy:
    """Test policy registration and defaults."""

    def test_default_policy(self, operator):
        """Types without a policy use the configured defaults."""
        sweeper = RetentionSweeper(operator)
        policy = sweeper.policy_for("task")
        assert policy.retention_days == 30
        assert policy.batch_size == 2
        assert policy.purge_allowed

    def test_explicit_defaults(self, operator):
        sweeper = RetentionSweeper(operator, default_retention_days=0, default_batch_size=50)
        assert sweeper.policy_for("task").retention_days == 0
        assert sweeper.policy_for("task").batch_size == 50

    def test_registered_policy(self, operator):
        policy = RetentionPolicy(entity_type="task", retention_days=90)
        sweeper = RetentionSweeper(operator, policies=[policy])
        assert sweeper.policy_for("task") is policy

    def test_unknown_type_rejected(self, operator):
        """Policies must name a registered type."""
        sweeper = RetentionSweeper(operator)
        with pytest.raises(NotConfiguredError):
            sweeper.register_policy(RetentionPolicy(entity_type="ghost"))


class TestSweep:
    """Test sweeping across entity types."""

    @pytest.mark.asyncio
    async def test_sweep_purges_expired(self, operator, store):
        """Every expired record is purged; recent and live ones stay."""
        report = await RetentionSweeper(operator).sweep()

        assert report.errors == {}
        assert report.deleted_by_type()["task"] == 5
        assert report.deleted_by_type()["project"] == 1
        assert report.deleted_by_type()["comment"] == 1
        assert report.total_deleted == 7
        assert report.finished_at == NOW

        assert sorted(r["id"] for r in store.adapter("project").all()) == [2, 3]
        assert [r["id"] for r in store.adapter("task").all()] == [6]

    @pytest.mark.asyncio
    async def test_sweep_batches(self, operator):
        """Types with more candidates than a batch take several batches."""
        report = await RetentionSweeper(operator).sweep(["task"])

        batches = report.results["task"]
        assert [len(b.candidate_records) for b in batches] == [2, 2, 1]
        assert list(report.results) == ["task"]

    @pytest.mark.asyncio
    async def test_max_batches(self, operator, store):
        """max_batches caps one sweep's work per type."""
        sweeper = RetentionSweeper(
            operator,
            policies=[RetentionPolicy(entity_type="task", batch_size=2, max_batches=1)],
        )
        report = await sweeper.sweep(["task"])

        assert report.deleted_by_type() == {"task": 2}
        assert len(store.adapter("task").all()) == 4

    @pytest.mark.asyncio
    async def test_dependents_first(self, operator):
        """Dependents are swept before their parents."""
        report = await RetentionSweeper(operator).sweep()
        order = list(report.results)
        assert order.index("comment") < order.index("task") < order.index("project")

    @pytest.mark.asyncio
    async def test_dry_run(self, operator, store):
        """Dry runs take a single batch per type and delete nothing."""
        report = await RetentionSweeper(operator).sweep(dry_run=True)

        assert report.dry_run
        assert report.total_deleted == 0
        assert len(report.results["task"]) == 1
        assert len(store.adapter("task").all()) == 6

    @pytest.mark.asyncio
    async def test_purge_not_allowed(self, operator, store):
        """Types whose policy forbids purging are skipped."""
        sweeper = RetentionSweeper(
            operator,
            policies=[RetentionPolicy(entity_type="project", purge_allowed=False)],
        )
        report = await sweeper.sweep()

        assert "project" in report.skipped
        assert "project" not in report.results
        assert len(store.adapter("project").all()) == 3

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, operator, store):
        """A failing type is reported and the sweep continues."""
        task_adapter = store.adapter("task")
        with patch.object(
            task_adapter, "delete_many", AsyncMock(side_effect=RuntimeError("locked"))
        ):
            report = await RetentionSweeper(operator).sweep()

        assert "locked" in report.errors["task"]
        assert report.deleted_by_type()["project"] == 1
        assert report.deleted_by_type()["comment"] == 1

    @pytest.mark.asyncio
    async def test_unknown_type(self, operator):
        """Unknown types fail before anything is purged."""
        with pytest.raises(NotConfiguredError):
            await RetentionSweeper(operator).sweep(["task", "ghost"])

    @pytest.mark.asyncio
    async def test_sweep_event(self, operator, sink):
        """Each sweep records a summary event."""
        await RetentionSweeper(operator).sweep()

        events = sink.by_action(LifecycleAction.SWEEP)
        assert len(events) == 1
        assert events[0].entity_type == "*"
        assert events[0].success
        assert events[0].details["deleted_by_type"]["task"] == 5

    @pytest.mark.asyncio
    async def test_run_periodic(self, operator):
        """The periodic loop stops when its event is set."""
        sweeper = RetentionSweeper(operator)
        stop = asyncio.Event()

        original = sweeper.sweep

        async def sweep_once(*args, **kwargs):
            report = await original(*args, **kwargs)
            stop.set()
            return report

        with patch.object(sweeper, "sweep", side_effect=sweep_once):
            last = await sweeper.run_periodic(interval_seconds=0.01, stop_event=stop)

        assert last is not None
        assert last.total_deleted == 7

    @pytest.mark.asyncio
    async def test_run_periodic_hands_off_reports(self, operator):
        """Each report goes to the callback; only the last one is kept."""
        sweeper = RetentionSweeper(operator)
        stop = asyncio.Event()
        seen = []

        def on_report(report):
            seen.append(report.total_deleted)
            if len(seen) == 3:
                stop.set()

        last = await sweeper.run_periodic(
            interval_seconds=0, stop_event=stop, on_report=on_report
        )

        assert seen == [7, 0, 0]
        assert last.total_deleted == 0

    @pytest.mark.asyncio
    async def test_run_periodic_already_stopped(self, operator):
        stop = asyncio.Event()
        stop.set()
        assert await RetentionSweeper(operator).run_periodic(stop_event=stop) is None
