"""
SQLAlchemy mixins for soft delete functionality.

These mixins add the lifecycle columns to SQLAlchemy models without removing
or repurposing any existing field.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, Query, Session, mapped_column

LIFECYCLE_FIELDS = (
    "deleted_at",
    "deleted_by",
    "delete_reason",
    "restored_at",
    "restored_by",
    "restore_reason",
)

REASON_MAX_LENGTH = 500


class SoftDeleteMixin:
    """
    Mixin to add soft delete columns to SQLAlchemy models.

    Provides:
    - Deletion provenance (deleted_at, deleted_by, delete_reason)
    - Restoration provenance (restored_at, restored_by, restore_reason)
    - A version counter used for compare-and-swap updates
    - Query helpers for live and deleted rows

    Usage:
        class Project(Base, SoftDeleteMixin):
            __tablename__ = 'projects'
            id = mapped_column(Integer, primary_key=True)
            workspace_id = mapped_column(Integer, index=True)
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    delete_reason: Mapped[Optional[str]] = mapped_column(
        String(REASON_MAX_LENGTH), nullable=True
    )

    restored_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    restored_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    restore_reason: Mapped[Optional[str]] = mapped_column(
        String(REASON_MAX_LENGTH), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def query_active(cls, session: Session) -> Query[Any]:
        """
        Return query for live (non-deleted) records only.

        Args:
            session: SQLAlchemy session

        Returns:
            Query filtered to exclude deleted records
        """
        return session.query(cls).filter(cls.deleted_at.is_(None))

    @classmethod
    def query_deleted(cls, session: Session) -> Query[Any]:
        """Return query for soft-deleted records only."""
        return session.query(cls).filter(cls.deleted_at.is_not(None))

    @classmethod
    def query_all(cls, session: Session) -> Query[Any]:
        """Return query for all records including deleted."""
        return session.query(cls)

    def to_dict(self, include_lifecycle_fields: bool = True) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        SQLite hands back naive datetimes; they are stored as UTC so they are
        returned as UTC-aware values.

        Args:
            include_lifecycle_fields: Whether to include soft delete fields

        Returns:
            Dictionary representation of the model
        """
        result: Dict[str, Any] = {}

        table = getattr(self, "__table__", None)
        if table is None:
            return result

        for column in table.columns:
            if hasattr(self, column.key):
                value = getattr(self, column.key)
                if isinstance(value, datetime) and value.tzinfo is None:
                    value = value.replace(tzinfo=timezone.utc)
                result[column.key] = value

        if not include_lifecycle_fields:
            for field in LIFECYCLE_FIELDS + ("version",):
                result.pop(field, None)

        return result
