"""
Data models for the lifecycle event trail.

Every soft delete, restore and cleanup invocation produces one event,
successful or not, so cascade gaps and failures can be audited afterwards.
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleAction(str, Enum):
    """Actions recorded in the lifecycle event trail."""

    SOFT_DELETE = "SOFT_DELETE"
    RESTORE = "RESTORE"
    CLEANUP = "CLEANUP"
    CASCADE_FAILED = "CASCADE_FAILED"
    SWEEP = "SWEEP"


class LifecycleEvent(BaseModel):
    """
    Structured record of one lifecycle engine invocation.

    Captures the entity type and filter targeted, who asked, whether the
    cascade was requested and, on failure, the error.
    """

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()), description="Unique event id"
    )
    timestamp: datetime = Field(default_factory=utcnow, description="UTC timestamp")

    action: LifecycleAction = Field(..., description="Type of action performed")
    entity_type: str = Field(..., description="Entity type targeted")
    filter: Dict[str, Any] = Field(
        default_factory=dict, description="Filter the caller supplied"
    )
    record_ids: List[Any] = Field(
        default_factory=list, description="Ids of records transitioned"
    )

    actor: Optional[str] = Field(None, description="Who requested the transition")
    reason: Optional[str] = Field(None, description="Reason supplied by the caller")
    cascade: bool = Field(False, description="Whether cascading was requested")
    depth: int = Field(0, description="Cascade depth, 0 for the primary call", ge=0)

    success: bool = Field(True, description="Whether the action succeeded")
    error_message: Optional[str] = Field(None, description="Error if action failed")
    details: Dict[str, Any] = Field(
        default_factory=dict, description="Additional context-specific details"
    )

    checksum: Optional[str] = Field(
        None, description="Checksum of the event for integrity verification"
    )

    @model_validator(mode="after")
    def validate_error_message(self) -> "LifecycleEvent":
        """Failed events must say why."""
        if not self.success and not self.error_message:
            raise ValueError("error_message is required for failed events")
        return self

    def calculate_checksum(self, algorithm: str = "sha256") -> str:
        """
        Calculate checksum for the event.

        Args:
            algorithm: Hash algorithm to use

        Returns:
            Hex digest of the checksum
        """
        data = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "entity_type": self.entity_type,
            "filter": self.filter,
            "record_ids": self.record_ids,
            "actor": self.actor,
            "success": self.success,
        }
        json_str = json.dumps(data, sort_keys=True, default=str)

        if algorithm == "sha256":
            return hashlib.sha256(json_str.encode()).hexdigest()
        elif algorithm == "sha512":
            return hashlib.sha512(json_str.encode()).hexdigest()
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

    def verify_checksum(self, expected_checksum: str, algorithm: str = "sha256") -> bool:
        return self.calculate_checksum(algorithm) == expected_checksum

    def to_log_format(self) -> str:
        """
        Convert to a standardized log format string.

        Returns:
            Formatted log string
        """
        parts = [
            f"[{self.timestamp.isoformat()}]",
            f"ACTION={self.action}",
            f"ENTITY={self.entity_type}",
            f"FILTER={json.dumps(self.filter, sort_keys=True, default=str)}",
            f"ACTOR={self.actor or 'system'}",
            f"CASCADE={self.cascade}",
        ]

        if self.reason:
            parts.append(f"REASON='{self.reason}'")

        if not self.success:
            parts.append(f"ERROR='{self.error_message}'")

        return " ".join(parts)

    def log_fields(self) -> Dict[str, Any]:
        """Fields passed to ``logging`` as structured ``extra`` data."""
        return {
            "event_id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "filter": self.filter,
            "record_ids": self.record_ids,
            "actor": self.actor,
            "cascade": self.cascade,
            "depth": self.depth,
            "success": self.success,
            "error": self.error_message,
        }


class EventQuery(BaseModel):
    """Query parameters for searching lifecycle events."""

    start_date: Optional[datetime] = Field(None, description="Start of time range")
    end_date: Optional[datetime] = Field(None, description="End of time range")
    actions: Optional[List[LifecycleAction]] = Field(
        None, description="Filter by action types"
    )
    entity_types: Optional[List[str]] = Field(
        None, description="Filter by entity types"
    )
    actor: Optional[str] = Field(None, description="Filter by actor")
    failures_only: bool = Field(False, description="Only show failed actions")
    limit: int = Field(100, description="Maximum results to return", gt=0, le=10000)

    @field_validator("end_date")
    @classmethod
    def validate_date_range(
        cls, v: Optional[datetime], info: ValidationInfo
    ) -> Optional[datetime]:
        """Ensure end date is after start date."""
        if v and "start_date" in info.data and info.data["start_date"]:
            if v < info.data["start_date"]:
                raise ValueError("End date must be after start date")
        return v

    def matches(self, event: LifecycleEvent) -> bool:
        """Check an in-memory event against this query."""
        if self.start_date and event.timestamp < self.start_date:
            return False
        if self.end_date and event.timestamp > self.end_date:
            return False
        if self.actions and event.action not in [
            LifecycleAction(a).value for a in self.actions
        ]:
            return False
        if self.entity_types and event.entity_type not in self.entity_types:
            return False
        if self.actor and event.actor != self.actor:
            return False
        if self.failures_only and event.success:
            return False
        return True
