"""
Data models for soft delete operations.

These models describe cascade configuration, retention policies and the
results reported by cleanup, sweep and cascade audit runs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CascadeEdge(BaseModel):
    """A dependent entity type and the foreign key that points at its parent."""

    model_config = ConfigDict(frozen=True)

    entity_type: str = Field(
        ..., description="Dependent entity type", min_length=1, max_length=100
    )
    foreign_key: str = Field(
        ..., description="Field on the dependent holding the parent id", min_length=1
    )


class CascadeConfig(BaseModel):
    """Lifecycle configuration for one entity type."""

    model_config = ConfigDict(frozen=True)

    entity_type: str = Field(..., description="Entity type", min_length=1, max_length=100)
    deleted_at_field: str = Field(
        "deleted_at", description="Field marking the record as soft-deleted"
    )
    version_field: Optional[str] = Field(
        "version", description="Optimistic concurrency field, None to disable"
    )
    cascade: List[CascadeEdge] = Field(
        default_factory=list, description="Dependents that follow this type"
    )

    @field_validator("cascade")
    @classmethod
    def validate_unique_edges(cls, v: List[CascadeEdge]) -> List[CascadeEdge]:
        """Reject duplicate edges."""
        seen = set()
        for edge in v:
            key = (edge.entity_type, edge.foreign_key)
            if key in seen:
                raise ValueError(
                    f"Duplicate cascade edge {edge.entity_type}.{edge.foreign_key}"
                )
            seen.add(key)
        return v

    @property
    def dependent_types(self) -> List[str]:
        return [edge.entity_type for edge in self.cascade]


class CleanupResult(BaseModel):
    """Outcome of one cleanup batch for a single entity type."""

    entity_type: str = Field(..., description="Entity type that was swept")
    cutoff: datetime = Field(..., description="Records deleted before this are purged")
    dry_run: bool = Field(False, description="Whether storage was left untouched")
    deleted_count: int = Field(0, description="Rows physically removed", ge=0)
    candidate_records: List[Dict[str, Any]] = Field(
        default_factory=list, description="Records selected for purge"
    )

    @property
    def candidate_ids(self) -> List[Any]:
        return [record["id"] for record in self.candidate_records]


class RetentionPolicy(BaseModel):
    """Defines how long soft-deleted records of one type are kept."""

    entity_type: str = Field(..., description="Type of entity this policy applies to")
    retention_days: int = Field(
        30, description="Days to keep a record after soft delete", ge=0
    )
    batch_size: int = Field(100, description="Records purged per batch", gt=0)
    max_batches: Optional[int] = Field(
        None, description="Upper bound on batches per sweep", gt=0
    )
    purge_allowed: bool = Field(True, description="Whether data can ever be purged")


class SweepReport(BaseModel):
    """Aggregate outcome of a retention sweep across entity types."""

    started_at: datetime = Field(..., description="When the sweep began")
    finished_at: Optional[datetime] = Field(None, description="When the sweep ended")
    dry_run: bool = Field(False, description="Whether storage was left untouched")
    results: Dict[str, List[CleanupResult]] = Field(
        default_factory=dict, description="Cleanup batches by entity type"
    )
    skipped: List[str] = Field(
        default_factory=list, description="Types whose policy forbids purging"
    )
    errors: Dict[str, str] = Field(
        default_factory=dict, description="Failure message by entity type"
    )

    def add_result(self, result: CleanupResult) -> None:
        """Add a cleanup batch to the report."""
        self.results.setdefault(result.entity_type, []).append(result)

    @property
    def total_deleted(self) -> int:
        return sum(r.deleted_count for batches in self.results.values() for r in batches)

    @property
    def total_candidates(self) -> int:
        return sum(
            len(r.candidate_records) for batches in self.results.values() for r in batches
        )

    def deleted_by_type(self) -> Dict[str, int]:
        """Rows removed per entity type."""
        return {
            entity_type: sum(r.deleted_count for r in batches)
            for entity_type, batches in self.results.items()
        }


class LiveDependent(BaseModel):
    """A dependent record still live under a soft-deleted parent."""

    entity_type: str
    record_id: Any
    parent_type: str
    parent_id: Any
    foreign_key: str


class CascadeAudit(BaseModel):
    """Result of checking a soft-deleted subtree for cascade gaps."""

    entity_type: str
    parent_ids: List[Any] = Field(default_factory=list)
    checked: int = Field(0, description="Dependent records inspected")
    live_dependents: List[LiveDependent] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.live_dependents

    def by_type(self) -> Dict[str, int]:
        """Live dependents counted per entity type."""
        counts: Dict[str, int] = {}
        for dependent in self.live_dependents:
            counts[dependent.entity_type] = counts.get(dependent.entity_type, 0) + 1
        return counts
