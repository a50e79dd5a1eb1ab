"""
Soft Delete Module - cascading soft delete, restore and retention purge.

Provides the cascade registry, entity store adapters, the lifecycle operator
and the retention sweeper.
"""

from .adapters import (
    EntityAdapter,
    EntityStore,
    MemoryEntityAdapter,
    MemoryEntityStore,
    SQLEntityAdapter,
    SQLEntityStore,
)
from .exceptions import (
    CascadeCycleError,
    CascadeDepthError,
    NotConfiguredError,
    NotDeletedError,
    RecordNotFoundError,
    RegistryFrozenError,
    SoftDeleteError,
    VersionConflictError,
    http_status_for,
)
from .filters import NOT_NULL, matches, merge_filters
from .mixins import LIFECYCLE_FIELDS, SoftDeleteMixin
from .models import (
    CascadeAudit,
    CascadeConfig,
    CascadeEdge,
    CleanupResult,
    LiveDependent,
    RetentionPolicy,
    SweepReport,
)
from .operator import LifecycleOperator
from .registry import CascadeRegistry, default_registry
from .retention import RetentionSweeper

__all__ = [
    # Engine
    "LifecycleOperator",
    "RetentionSweeper",
    # Registry
    "CascadeRegistry",
    "default_registry",
    # Stores
    "EntityAdapter",
    "EntityStore",
    "MemoryEntityAdapter",
    "MemoryEntityStore",
    "SQLEntityAdapter",
    "SQLEntityStore",
    # Persistence
    "SoftDeleteMixin",
    "LIFECYCLE_FIELDS",
    # Filters
    "NOT_NULL",
    "matches",
    "merge_filters",
    # Models
    "CascadeConfig",
    "CascadeEdge",
    "CleanupResult",
    "RetentionPolicy",
    "SweepReport",
    "CascadeAudit",
    "LiveDependent",
    # Exceptions
    "SoftDeleteError",
    "NotConfiguredError",
    "RecordNotFoundError",
    "NotDeletedError",
    "VersionConflictError",
    "CascadeCycleError",
    "CascadeDepthError",
    "RegistryFrozenError",
    "http_status_for",
]
