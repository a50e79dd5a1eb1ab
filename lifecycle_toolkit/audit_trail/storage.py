"""
Storage backends for lifecycle events.

Provides the abstract sink interface the lifecycle engine writes to, and
implementations backed by logging, memory, JSONL files and SQL databases.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    desc,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import EventQuery, LifecycleAction, LifecycleEvent

Base = declarative_base()


class LifecycleEventDB(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for lifecycle events."""

    __tablename__ = "lifecycle_events"

    id = Column(String(50), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(100), nullable=False, index=True)
    filter = Column(JSON, nullable=True)
    record_ids = Column(JSON, nullable=True)

    actor = Column(String(100), nullable=True, index=True)
    reason = Column(Text, nullable=True)
    cascade = Column(Boolean, nullable=False, default=False)
    depth = Column(Integer, nullable=False, default=0)

    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    checksum = Column(String(128), nullable=False)

    __table_args__ = (
        Index("idx_lifecycle_timestamp_action", timestamp, action),
        Index("idx_lifecycle_entity_timestamp", entity_type, timestamp),
    )


def _jsonable(value: Any) -> Any:
    """Round-trip through JSON so filters with datetimes fit a JSON column."""
    return json.loads(json.dumps(value, default=str))


class EventSink(ABC):
    """Abstract base class for lifecycle event sinks."""

    async def initialize(self) -> None:
        """Initialize the sink."""
        pass

    async def close(self) -> None:
        """Release any resources held by the sink."""
        pass

    @abstractmethod
    async def emit(self, event: LifecycleEvent) -> None:
        """
        Record a lifecycle event.

        Args:
            event: Event to store
        """
        pass

    @abstractmethod
    async def query(self, query: EventQuery) -> List[LifecycleEvent]:
        """
        Query recorded events, newest first.

        Args:
            query: Query parameters

        Returns:
            List of matching events
        """
        pass


class LoggingEventSink(EventSink):
    """Writes events to the ``logging`` hierarchy; the default sink."""

    def __init__(self, logger_name: str = "lifecycle_toolkit.events"):
        self.logger = logging.getLogger(logger_name)

    async def emit(self, event: LifecycleEvent) -> None:
        if not event.checksum:
            event.checksum = event.calculate_checksum()
        level = logging.INFO if event.success else logging.WARNING
        self.logger.log(level, event.to_log_format(), extra=event.log_fields())

    async def query(self, query: EventQuery) -> List[LifecycleEvent]:
        # Log records are not read back
        return []


class MemoryEventSink(EventSink):
    """Keeps events in a list; used by tests and short-lived tooling."""

    def __init__(self) -> None:
        self.events: List[LifecycleEvent] = []

    async def emit(self, event: LifecycleEvent) -> None:
        if not event.checksum:
            event.checksum = event.calculate_checksum()
        self.events.append(event)

    async def query(self, query: EventQuery) -> List[LifecycleEvent]:
        found = [e for e in reversed(self.events) if query.matches(e)]
        return found[: query.limit]

    def by_action(self, action: LifecycleAction) -> List[LifecycleEvent]:
        return [e for e in self.events if e.action == action.value]


class FileEventSink(EventSink):
    """Appends events to one JSONL file per UTC day."""

    def __init__(self, storage_path: str):
        """
        Initialize file-based event storage.

        Args:
            storage_path: Directory path for storing event files
        """
        self.storage_path = Path(storage_path)
        self.file_lock = asyncio.Lock()

    async def initialize(self) -> None:
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, timestamp: datetime) -> Path:
        return self.storage_path / f"lifecycle_{timestamp.strftime('%Y%m%d')}.jsonl"

    async def emit(self, event: LifecycleEvent) -> None:
        if not event.checksum:
            event.checksum = event.calculate_checksum()

        async with self.file_lock:
            with open(self._get_file_path(event.timestamp), "a") as f:
                f.write(json.dumps(event.model_dump(), default=str) + "\n")

    async def query(self, query: EventQuery) -> List[LifecycleEvent]:
        events: List[LifecycleEvent] = []
        for file_path in sorted(self.storage_path.glob("lifecycle_*.jsonl"), reverse=True):
            with open(file_path, "r") as f:
                day = [LifecycleEvent(**json.loads(line)) for line in f if line.strip()]
            events.extend(e for e in reversed(day) if query.matches(e))
            if len(events) >= query.limit:
                break
        return events[: query.limit]

    async def verify_integrity(self) -> Dict[str, Any]:
        """Recompute checksums of every stored event."""
        results: Dict[str, Any] = {
            "total_checked": 0,
            "valid": 0,
            "invalid": 0,
            "invalid_entries": [],
        }

        for file_path in sorted(self.storage_path.glob("lifecycle_*.jsonl")):
            with open(file_path, "r") as f:
                for line_num, line in enumerate(f):
                    if not line.strip():
                        continue
                    event = LifecycleEvent(**json.loads(line))
                    results["total_checked"] += 1
                    if event.checksum and event.verify_checksum(event.checksum):
                        results["valid"] += 1
                    else:
                        results["invalid"] += 1
                        results["invalid_entries"].append(
                            {"id": event.id, "file": str(file_path), "line": line_num}
                        )

        return results


class SQLEventSink(EventSink):
    """SQL database sink for lifecycle events."""

    def __init__(self, connection_string: str):
        """
        Initialize SQL event storage.

        Args:
            connection_string: Database connection string
        """
        self.connection_string = connection_string
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]

    async def initialize(self) -> None:
        """Initialize the database."""
        if self.connection_string.startswith("sqlite"):
            self.engine = create_engine(self.connection_string, pool_pre_ping=True)
        else:
            self.engine = create_engine(
                self.connection_string,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
            )

        Base.metadata.create_all(bind=self.engine)

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    async def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
        self.SessionLocal = None

    def _event_to_db(self, event: LifecycleEvent) -> LifecycleEventDB:
        if not event.checksum:
            event.checksum = event.calculate_checksum()

        return LifecycleEventDB(
            id=event.id,
            timestamp=event.timestamp,
            action=event.action,
            entity_type=event.entity_type,
            filter=_jsonable(event.filter),
            record_ids=_jsonable(event.record_ids),
            actor=event.actor,
            reason=event.reason,
            cascade=event.cascade,
            depth=event.depth,
            success=event.success,
            error_message=event.error_message,
            details=_jsonable(event.details),
            checksum=event.checksum,
        )

    def _db_to_event(self, db_event: LifecycleEventDB) -> LifecycleEvent:
        return LifecycleEvent(
            id=db_event.id,
            timestamp=db_event.timestamp,
            action=db_event.action,
            entity_type=db_event.entity_type,
            filter=db_event.filter or {},
            record_ids=db_event.record_ids or [],
            actor=db_event.actor,
            reason=db_event.reason,
            cascade=db_event.cascade,
            depth=db_event.depth,
            success=db_event.success,
            error_message=db_event.error_message,
            details=db_event.details or {},
            checksum=db_event.checksum,
        )

    async def emit(self, event: LifecycleEvent) -> None:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        with self.SessionLocal() as session:
            session.add(self._event_to_db(event))
            session.commit()

    async def query(self, query: EventQuery) -> List[LifecycleEvent]:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        with self.SessionLocal() as session:
            q = session.query(LifecycleEventDB)

            if query.start_date:
                q = q.filter(LifecycleEventDB.timestamp >= query.start_date)
            if query.end_date:
                q = q.filter(LifecycleEventDB.timestamp <= query.end_date)
            if query.actions:
                q = q.filter(
                    LifecycleEventDB.action.in_(
                        [LifecycleAction(a).value for a in query.actions]
                    )
                )
            if query.entity_types:
                q = q.filter(LifecycleEventDB.entity_type.in_(query.entity_types))
            if query.actor:
                q = q.filter(LifecycleEventDB.actor == query.actor)
            if query.failures_only:
                q = q.filter(LifecycleEventDB.success.is_(False))

            q = q.order_by(desc(LifecycleEventDB.timestamp)).limit(query.limit)
            return [self._db_to_event(r) for r in q.all()]


async def get_event_sink(backend: str = "logging", **kwargs: Any) -> EventSink:
    """
    Create and initialize an event sink.

    Args:
        backend: One of ``logging``, ``memory``, ``file`` or ``sql``
        **kwargs: Backend-specific parameters

    Returns:
        Initialized sink
    """
    sink: EventSink
    if backend == "logging":
        sink = LoggingEventSink()
    elif backend == "memory":
        sink = MemoryEventSink()
    elif backend == "file":
        storage_path = kwargs.get("storage_path")
        if not storage_path:
            raise ValueError("storage_path is required for file backend")
        sink = FileEventSink(storage_path)
    elif backend == "sql":
        connection_string = kwargs.get("connection_string")
        if not connection_string:
            raise ValueError("connection_string is required for sql backend")
        sink = SQLEventSink(connection_string)
    else:
        raise ValueError(f"Unknown event backend: {backend}")

    await sink.initialize()
    return sink

