"""
Entity store adapters.

Provides the abstract per-entity capability interface the lifecycle engine
talks to, and implementations backed by memory and by SQLAlchemy.
"""

import copy
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type

from sqlalchemy import asc, create_engine, desc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .exceptions import NotConfiguredError
from .filters import Filter, matches, where
from .mixins import LIFECYCLE_FIELDS

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class EntityAdapter(ABC):
    """Find/update/delete capabilities for a single entity type."""

    entity_type: str

    @abstractmethod
    async def find_first(self, filter: Filter) -> Optional[Record]:
        """
        Get the first record matching a filter.

        Args:
            filter: Filter to apply

        Returns:
            Record or None if nothing matches
        """
        pass

    @abstractmethod
    async def find_many(
        self,
        filter: Filter,
        limit: Optional[int] = None,
        order_by: str = "id",
    ) -> List[Record]:
        """
        Get all records matching a filter.

        Args:
            filter: Filter to apply
            limit: Maximum records to return
            order_by: Field to sort by, prefix with ``-`` for descending

        Returns:
            List of matching records
        """
        pass

    @abstractmethod
    async def update_many(self, filter: Filter, data: Dict[str, Any]) -> int:
        """
        Apply ``data`` to every record matching a filter.

        Returns:
            Number of records updated
        """
        pass

    @abstractmethod
    async def delete_many(self, filter: Filter) -> int:
        """
        Physically delete every record matching a filter.

        Returns:
            Number of records deleted
        """
        pass

    @abstractmethod
    async def count(self, filter: Filter) -> int:
        """Count records matching a filter."""
        pass


class EntityStore(ABC):
    """A set of entity adapters with a shared initialize/close lifecycle."""

    def __init__(self) -> None:
        self._adapters: Dict[str, EntityAdapter] = {}

    async def initialize(self) -> None:
        """Prepare the underlying storage."""
        pass

    async def close(self) -> None:
        """Release the underlying storage."""
        pass

    def register_adapter(self, entity_type: str, adapter: EntityAdapter) -> None:
        self._adapters[entity_type] = adapter

    def adapter(self, entity_type: str) -> EntityAdapter:
        """
        Get the adapter for an entity type.

        Raises:
            NotConfiguredError: If the store has no adapter for the type
        """
        try:
            return self._adapters[entity_type]
        except KeyError:
            raise NotConfiguredError(entity_type) from None

    @property
    def entity_types(self) -> List[str]:
        return list(self._adapters)

    async def __aenter__(self) -> "EntityStore":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def _sort_key(field: str) -> Any:
    def key(record: Record) -> Any:
        value = record.get(field)
        # Nulls sort last
        return (value is None, value if value is not None else 0)

    return key


class MemoryEntityAdapter(EntityAdapter):
    """Dict-backed adapter, useful for tests and local tooling."""

    def __init__(self, entity_type: str, version_field: Optional[str] = "version"):
        self.entity_type = entity_type
        self.version_field = version_field
        self._records: Dict[Any, Record] = {}
        self._ids = itertools.count(1)

    def insert(self, record: Dict[str, Any]) -> Record:
        """
        Seed a record, filling in the id and lifecycle defaults.

        Args:
            record: Field values for the new record

        Returns:
            Copy of the stored record
        """
        stored = dict(record)
        if stored.get("id") is None:
            stored["id"] = next(self._ids)
            while stored["id"] in self._records:
                stored["id"] = next(self._ids)
        for field in LIFECYCLE_FIELDS:
            stored.setdefault(field, None)
        if self.version_field:
            stored.setdefault(self.version_field, 1)
        self._records[stored["id"]] = stored
        return copy.deepcopy(stored)

    def get(self, record_id: Any) -> Optional[Record]:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def all(self) -> List[Record]:
        return [copy.deepcopy(r) for r in self._records.values()]

    def _select(self, filter: Filter) -> List[Record]:
        return [r for r in self._records.values() if matches(r, filter)]

    async def find_first(self, filter: Filter) -> Optional[Record]:
        found = await self.find_many(filter, limit=1)
        return found[0] if found else None

    async def find_many(
        self,
        filter: Filter,
        limit: Optional[int] = None,
        order_by: str = "id",
    ) -> List[Record]:
        field = order_by.lstrip("-")
        selected = sorted(
            self._select(filter),
            key=_sort_key(field),
            reverse=order_by.startswith("-"),
        )
        if limit is not None:
            selected = selected[:limit]
        return [copy.deepcopy(r) for r in selected]

    async def update_many(self, filter: Filter, data: Dict[str, Any]) -> int:
        selected = self._select(filter)
        for record in selected:
            record.update(data)
        return len(selected)

    async def delete_many(self, filter: Filter) -> int:
        selected = self._select(filter)
        for record in selected:
            del self._records[record["id"]]
        return len(selected)

    async def count(self, filter: Filter) -> int:
        return len(self._select(filter))


class MemoryEntityStore(EntityStore):
    """Store holding one ``MemoryEntityAdapter`` per entity type."""

    def __init__(self, entity_types: Iterable[str]):
        super().__init__()
        for entity_type in entity_types:
            self.register_adapter(entity_type, MemoryEntityAdapter(entity_type))

    def adapter(self, entity_type: str) -> MemoryEntityAdapter:
        return super().adapter(entity_type)  # type: ignore[return-value]

    def insert(self, entity_type: str, record: Dict[str, Any]) -> Record:
        """Seed a record of ``entity_type``."""
        return self.adapter(entity_type).insert(record)


class SQLEntityAdapter(EntityAdapter):
    """Adapter for one SQLAlchemy mapped model class."""

    def __init__(
        self,
        entity_type: str,
        model: Type[Any],
        session_factory: sessionmaker,  # type: ignore[type-arg]
    ):
        self.entity_type = entity_type
        self.model = model
        self.SessionLocal = session_factory

    def _to_record(self, instance: Any) -> Record:
        if hasattr(instance, "to_dict"):
            return instance.to_dict()
        return {c.key: getattr(instance, c.key) for c in self.model.__table__.columns}

    def _order(self, order_by: str) -> Any:
        column = getattr(self.model, order_by.lstrip("-"))
        return desc(column) if order_by.startswith("-") else asc(column)

    async def find_first(self, filter: Filter) -> Optional[Record]:
        with self.SessionLocal() as session:
            instance = (
                session.query(self.model)
                .filter(where(self.model, filter))
                .order_by(self._order("id"))
                .first()
            )
            return self._to_record(instance) if instance is not None else None

    async def find_many(
        self,
        filter: Filter,
        limit: Optional[int] = None,
        order_by: str = "id",
    ) -> List[Record]:
        with self.SessionLocal() as session:
            q = (
                session.query(self.model)
                .filter(where(self.model, filter))
                .order_by(self._order(order_by))
            )
            if limit is not None:
                q = q.limit(limit)
            return [self._to_record(instance) for instance in q.all()]

    async def update_many(self, filter: Filter, data: Dict[str, Any]) -> int:
        with self.SessionLocal() as session:
            updated = (
                session.query(self.model)
                .filter(where(self.model, filter))
                .update(data, synchronize_session=False)
            )
            session.commit()
            return int(updated)

    async def delete_many(self, filter: Filter) -> int:
        with self.SessionLocal() as session:
            deleted = (
                session.query(self.model)
                .filter(where(self.model, filter))
                .delete(synchronize_session=False)
            )
            session.commit()
            return int(deleted)

    async def count(self, filter: Filter) -> int:
        with self.SessionLocal() as session:
            return int(
                session.query(self.model).filter(where(self.model, filter)).count()
            )


class SQLEntityStore(EntityStore):
    """SQL database store with one adapter per mapped model class."""

    def __init__(
        self,
        connection_string: str,
        models: Mapping[str, Type[Any]],
        create_tables: bool = True,
    ):
        """
        Initialize SQL entity storage.

        Args:
            connection_string: Database connection string
            models: Mapped model class by entity type
            create_tables: Whether to create missing tables on initialize
        """
        super().__init__()
        self.connection_string = connection_string
        self.models = dict(models)
        self.create_tables = create_tables
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]

    async def initialize(self) -> None:
        """Create the engine, tables and one adapter per model."""
        if self.connection_string.startswith("sqlite"):
            # SQLite doesn't support pool_size and max_overflow
            self.engine = create_engine(self.connection_string, pool_pre_ping=True)
        else:
            self.engine = create_engine(
                self.connection_string,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
            )

        if self.create_tables:
            for metadata in {model.metadata for model in self.models.values()}:
                metadata.create_all(bind=self.engine)

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )
        for entity_type, model in self.models.items():
            self.register_adapter(
                entity_type, SQLEntityAdapter(entity_type, model, self.SessionLocal)
            )
        logger.info(
            f"Entity store initialized with {len(self.models)} entity types",
            extra={"entity_types": sorted(self.models)},
        )

    async def close(self) -> None:
        """Dispose the engine and its connection pool."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
        self.SessionLocal = None
        self._adapters.clear()

    def adapter(self, entity_type: str) -> EntityAdapter:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return super().adapter(entity_type)
