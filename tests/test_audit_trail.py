"""
Tests for the lifecycle event trail.

Tests cover event models, queries and the logging, memory, file and SQL sinks.
"""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from lifecycle_toolkit.audit_trail import (
    EventQuery,
    FileEventSink,
    LifecycleAction,
    LifecycleEvent,
    LoggingEventSink,
    MemoryEventSink,
    SQLEventSink,
    get_event_sink,
)
from lifecycle_toolkit.audit_trail.storage import LifecycleEventDB

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_event(**kwargs):
    defaults = {
        "timestamp": NOW,
        "action": LifecycleAction.SOFT_DELETE,
        "entity_type": "project",
        "filter": {"id": 1},
        "record_ids": [1],
        "actor": "u-1",
    }
    defaults.update(kwargs)
    return LifecycleEvent(**defaults)


class TestLifecycleEvent:
    """Test LifecycleEvent model functionality."""

    def test_event_creation(self):
        """Events get an id, a UTC timestamp and enum values."""
        event = LifecycleEvent(action=LifecycleAction.RESTORE, entity_type="task")

        assert event.id
        assert event.timestamp.tzinfo is not None
        assert event.action == "RESTORE"
        assert event.success
        assert event.depth == 0

    def test_failure_requires_message(self):
        """Failed events must carry an error message."""
        with pytest.raises(ValidationError, match="error_message is required"):
            LifecycleEvent(
                action=LifecycleAction.CLEANUP, entity_type="task", success=False
            )

    def test_checksum(self):
        """Checksums detect changes to recorded fields."""
        event = make_event()
        checksum = event.calculate_checksum()

        assert len(checksum) == 64
        assert event.verify_checksum(checksum)
        assert len(event.calculate_checksum("sha512")) == 128

        event.actor = "someone-else"
        assert not event.verify_checksum(checksum)

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError, match="Unsupported algorithm"):
            make_event().calculate_checksum("md5")

    def test_log_format(self):
        """The log line names action, entity, actor and error."""
        event = make_event(
            success=False, error_message="boom", reason="cleanup", cascade=True
        )
        line = event.to_log_format()

        assert "ACTION=SOFT_DELETE" in line
        assert "ENTITY=project" in line
        assert 'FILTER={"id": 1}' in line
        assert "ACTOR=u-1" in line
        assert "CASCADE=True" in line
        assert "REASON='cleanup'" in line
        assert "ERROR='boom'" in line

    def test_log_fields(self):
        fields = make_event().log_fields()
        assert fields["event_id"]
        assert fields["entity_type"] == "project"
        assert fields["error"] is None


class TestEventQuery:
    """Test in-memory query matching."""

    def test_date_range_validation(self):
        with pytest.raises(ValidationError, match="End date must be after start date"):
            EventQuery(start_date=NOW, end_date=NOW - timedelta(days=1))

    def test_matches(self):
        event = make_event()

        assert EventQuery().matches(event)
        assert EventQuery(actions=[LifecycleAction.SOFT_DELETE]).matches(event)
        assert not EventQuery(actions=[LifecycleAction.RESTORE]).matches(event)
        assert not EventQuery(entity_types=["task"]).matches(event)
        assert not EventQuery(actor="u-2").matches(event)
        assert not EventQuery(failures_only=True).matches(event)
        assert not EventQuery(start_date=NOW + timedelta(seconds=1)).matches(event)
        assert EventQuery(end_date=NOW).matches(event)


class TestMemoryEventSink:
    """Test the list-backed sink."""

    @pytest.mark.asyncio
    async def test_emit_and_query(self):
        """Events are checksummed and returned newest first."""
        sink = MemoryEventSink()
        first = make_event(timestamp=NOW)
        second = make_event(timestamp=NOW + timedelta(minutes=1), entity_type="task")
        await sink.emit(first)
        await sink.emit(second)

        assert first.checksum
        found = await sink.query(EventQuery())
        assert [e.id for e in found] == [second.id, first.id]

        found = await sink.query(EventQuery(entity_types=["project"]))
        assert [e.id for e in found] == [first.id]

        assert sink.by_action(LifecycleAction.SOFT_DELETE) == [first, second]


class TestLoggingEventSink:
    """Test the logging-backed default sink."""

    @pytest.mark.asyncio
    async def test_emit_logs_structured_record(self, caplog):
        """Events become log records carrying their fields as attributes."""
        sink = LoggingEventSink()
        event = make_event()

        with caplog.at_level(logging.INFO, logger="lifecycle_toolkit.events"):
            await sink.emit(event)

        assert event.checksum
        (log_record,) = caplog.records
        assert log_record.levelno == logging.INFO
        assert log_record.getMessage() == event.to_log_format()
        assert log_record.event_id == event.id
        assert log_record.entity_type == "project"
        assert log_record.record_ids == [1]

    @pytest.mark.asyncio
    async def test_failures_log_as_warnings(self, caplog):
        sink = LoggingEventSink()
        event = make_event(
            action=LifecycleAction.CASCADE_FAILED, success=False, error_message="boom"
        )

        with caplog.at_level(logging.INFO, logger="lifecycle_toolkit.events"):
            await sink.emit(event)

        assert caplog.records[0].levelno == logging.WARNING
        assert caplog.records[0].error == "boom"

    @pytest.mark.asyncio
    async def test_query_returns_nothing(self):
        sink = LoggingEventSink()
        await sink.emit(make_event())
        assert await sink.query(EventQuery()) == []


class TestFileEventSink:
    """Test JSONL file storage."""

    @pytest.mark.asyncio
    async def test_daily_files(self, tmp_path):
        """Events are appended to one file per day."""
        sink = FileEventSink(str(tmp_path / "events"))
        await sink.initialize()

        await sink.emit(make_event(timestamp=NOW))
        await sink.emit(make_event(timestamp=NOW + timedelta(days=1)))

        files = sorted(p.name for p in (tmp_path / "events").iterdir())
        assert files == ["lifecycle_20240601.jsonl", "lifecycle_20240602.jsonl"]

        line = (tmp_path / "events" / files[0]).read_text().strip()
        assert json.loads(line)["action"] == "SOFT_DELETE"

    @pytest.mark.asyncio
    async def test_query(self, tmp_path):
        """Queries read back across files, newest first."""
        sink = FileEventSink(str(tmp_path))
        await sink.initialize()

        events = [
            make_event(timestamp=NOW + timedelta(days=i), actor=f"u-{i}") for i in range(3)
        ]
        for event in events:
            await sink.emit(event)
        await sink.emit(
            make_event(
                timestamp=NOW,
                action=LifecycleAction.CASCADE_FAILED,
                success=False,
                error_message="db down",
            )
        )

        found = await sink.query(EventQuery(actions=[LifecycleAction.SOFT_DELETE]))
        assert [e.actor for e in found] == ["u-2", "u-1", "u-0"]
        assert found[0].timestamp == events[2].timestamp

        failures = await sink.query(EventQuery(failures_only=True))
        assert len(failures) == 1
        assert failures[0].error_message == "db down"

        limited = await sink.query(EventQuery(limit=2))
        assert len(limited) == 2

    @pytest.mark.asyncio
    async def test_verify_integrity(self, tmp_path):
        """Edited lines fail verification."""
        sink = FileEventSink(str(tmp_path))
        await sink.initialize()
        for i in range(3):
            await sink.emit(make_event(record_ids=[i]))

        results = await sink.verify_integrity()
        assert results["total_checked"] == 3
        assert results["valid"] == 3

        path = tmp_path / "lifecycle_20240601.jsonl"
        lines = path.read_text().splitlines()
        tampered = json.loads(lines[1])
        tampered["actor"] = "intruder"
        lines[1] = json.dumps(tampered)
        path.write_text("\n".join(lines) + "\n")

        results = await sink.verify_integrity()
        assert results["invalid"] == 1
        assert results["invalid_entries"][0]["line"] == 1


class TestSQLEventSink:
    """Test SQL event storage."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self):
        sink = SQLEventSink("sqlite://")
        with pytest.raises(RuntimeError, match="not initialized"):
            await sink.emit(make_event())

    @pytest.mark.asyncio
    async def test_emit_and_query(self):
        """Events round-trip through the lifecycle_events table."""
        sink = SQLEventSink("sqlite://")
        await sink.initialize()
        try:
            await sink.emit(make_event(timestamp=NOW, actor="u-1"))
            await sink.emit(
                make_event(
                    timestamp=NOW + timedelta(hours=1),
                    action=LifecycleAction.CLEANUP,
                    entity_type="task",
                    filter={},
                    actor=None,
                    details={"cutoff": NOW},
                )
            )
            await sink.emit(
                make_event(
                    timestamp=NOW + timedelta(hours=2),
                    action=LifecycleAction.CASCADE_FAILED,
                    success=False,
                    error_message="db down",
                )
            )

            found = await sink.query(EventQuery())
            assert [e.action for e in found] == ["CASCADE_FAILED", "CLEANUP", "SOFT_DELETE"]
            assert found[1].details == {"cutoff": str(NOW)}

            assert len(await sink.query(EventQuery(actor="u-1"))) == 2
            assert len(await sink.query(EventQuery(entity_types=["task"]))) == 1
            assert len(await sink.query(EventQuery(failures_only=True))) == 1
            assert (
                len(await sink.query(EventQuery(actions=[LifecycleAction.CLEANUP])))
                == 1
            )
            assert len(await sink.query(EventQuery(limit=1))) == 1

            with sink.SessionLocal() as session:
                stored = session.query(LifecycleEventDB).all()
                assert all(row.checksum for row in stored)
        finally:
            await sink.close()


class TestGetEventSink:
    """Test the sink factory."""

    @pytest.mark.asyncio
    async def test_logging_backend_is_default(self):
        assert isinstance(await get_event_sink(), LoggingEventSink)
        assert isinstance(await get_event_sink("logging"), LoggingEventSink)

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        assert isinstance(await get_event_sink("memory"), MemoryEventSink)

    @pytest.mark.asyncio
    async def test_file_backend(self, tmp_path):
        sink = await get_event_sink("file", storage_path=str(tmp_path / "trail"))
        assert isinstance(sink, FileEventSink)
        assert (tmp_path / "trail").is_dir()

    @pytest.mark.asyncio
    async def test_sql_backend(self):
        sink = await get_event_sink("sql", connection_string="sqlite://")
        assert isinstance(sink, SQLEventSink)
        await sink.close()

    @pytest.mark.asyncio
    async def test_missing_arguments(self):
        with pytest.raises(ValueError, match="storage_path"):
            await get_event_sink("file")
        with pytest.raises(ValueError, match="connection_string"):
            await get_event_sink("sql")

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown event backend"):
            await get_event_sink("kafka")
