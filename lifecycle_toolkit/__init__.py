"""
Lifecycle Toolkit - cascading soft delete for related records.

Governs the lifecycle of logically deleted records across a graph of entity
types: users, workspaces, projects, tasks and their dependents.

Key Features
------------
* **Cascade Registry**: Declarative, cycle-checked parent/dependent edges
* **Soft Delete & Restore**: Recursive transitions with per-branch failure isolation
* **Optimistic Concurrency**: Compare-and-swap updates on a version column
* **Retention Sweeper**: Batched, irreversible purge of long-deleted records
* **Event Trail**: One structured event per invocation, to memory, file or SQL

Quick Start
-----------
>>> from lifecycle_toolkit import LifecycleOperator, SQLEntityStore
>>> from lifecycle_toolkit.schema import MODELS
>>>
>>> store = SQLEntityStore("sqlite:///app.db", MODELS)
>>> await store.initialize()
>>> operator = LifecycleOperator(store)
>>>
>>> await operator.soft_delete("workspace", {"id": 7}, actor="u-1")
>>> live = await operator.find_live("project", {"workspace_id": 7})
>>> await operator.cleanup("project", older_than_days=30, dry_run=True)

License
-------
MIT License - See LICENSE file for details.
"""

__version__ = "1.0.0"

from .audit_trail import (
    EventSink,
    LifecycleEvent,
    LoggingEventSink,
    MemoryEventSink,
    get_event_sink,
)
from .config import LifecycleConfig, configure, get_config
from .soft_delete import (
    CascadeRegistry,
    LifecycleOperator,
    MemoryEntityStore,
    RetentionSweeper,
    SQLEntityStore,
    default_registry,
)

__all__ = [
    # Engine
    "LifecycleOperator",
    "RetentionSweeper",
    "CascadeRegistry",
    "default_registry",
    # Stores
    "MemoryEntityStore",
    "SQLEntityStore",
    # Event trail
    "EventSink",
    "LifecycleEvent",
    "LoggingEventSink",
    "MemoryEventSink",
    "get_event_sink",
    # Configuration
    "LifecycleConfig",
    "get_config",
    "configure",
]
