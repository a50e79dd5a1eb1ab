#!/usr/bin/env python3
"""
Cascade Soft Delete Example - Lifecycle Toolkit

Demonstrates the lifecycle of a workspace and everything under it:
- Cascading soft delete through projects, tasks and comments
- Reads that exclude deleted records
- Restoring only the workspace, then the whole subtree
- Auditing a cascade that partially failed
- Purging long-deleted records with the retention sweeper
"""

import asyncio
from datetime import timedelta
from typing import List, Optional

from lifecycle_toolkit.audit_trail import LifecycleAction, MemoryEventSink
from lifecycle_toolkit.config import LifecycleConfig
from lifecycle_toolkit.soft_delete import (
    LifecycleOperator,
    MemoryEntityStore,
    RetentionSweeper,
    default_registry,
)
from lifecycle_toolkit.soft_delete.adapters import MemoryEntityAdapter, Record
from lifecycle_toolkit.soft_delete.filters import Filter


class FlakyAdapter(MemoryEntityAdapter):
    """Memory adapter whose reads fail while the table is marked unavailable."""

    available = True

    async def find_many(
        self, filter: Filter, limit: Optional[int] = None, order_by: str = "id"
    ) -> List[Record]:
        if not self.available:
            raise ConnectionError(f"{self.entity_type} table unavailable")
        return await super().find_many(filter, limit, order_by)


def seed(store: MemoryEntityStore) -> None:
    store.insert("workspace", {"id": 1, "name": "Acme"})
    store.insert("project", {"id": 1, "name": "Apollo", "workspace_id": 1})
    store.insert("project", {"id": 2, "name": "Gemini", "workspace_id": 1})
    store.insert("task", {"id": 1, "title": "Design review", "project_id": 1})
    store.insert("task", {"id": 2, "title": "Launch plan", "project_id": 2})
    store.insert("comment", {"id": 1, "body": "Ship it", "task_id": 1})
    store.insert("section", {"id": 1, "name": "Backlog", "project_id": 1})


async def main() -> None:
    registry = default_registry()
    store = MemoryEntityStore(registry.entity_types())
    sections = FlakyAdapter("section")
    store.register_adapter("section", sections)
    sink = MemoryEventSink()
    operator = LifecycleOperator(
        store,
        registry=registry,
        sink=sink,
        config=LifecycleConfig(environment="development"),
    )
    seed(store)

    print("=== Cascading soft delete ===")
    workspace = await operator.soft_delete(
        "workspace", {"id": 1}, actor="admin", reason="Customer churned"
    )
    print(f"Workspace deleted at {workspace['deleted_at']:%Y-%m-%d %H:%M}")
    for entity_type in ("project", "task", "comment", "section"):
        print(f"  {entity_type}: {await operator.count_deleted(entity_type)} deleted")
    print(f"Live projects: {await operator.find_live('project')}")

    print("\n=== Restore the workspace only ===")
    await operator.restore("workspace", {"id": 1}, restored_by="admin")
    print(f"Live workspaces: {len(await operator.find_live('workspace'))}")
    print(f"Deleted projects: {len(await operator.find_deleted('project'))}")

    print("\n=== Restore the whole subtree ===")
    await operator.soft_delete("workspace", {"id": 1}, actor="admin")
    await operator.restore("workspace", {"id": 1}, cascade=True, restored_by="admin")
    print(f"Deleted tasks: {await operator.count_deleted('task')}")

    print("\n=== Partial cascade failure ===")
    sections.available = False
    await operator.soft_delete("project", {"id": 1}, actor="admin")
    sections.available = True

    for event in sink.by_action(LifecycleAction.CASCADE_FAILED):
        print(f"  {event.to_log_format()}")

    audit = await operator.audit_cascade("project", {"id": 1})
    print(f"Cascade complete: {audit.complete} (live: {audit.by_type()})")
    await operator.soft_delete("project", {"id": 1}, actor="admin")
    audit = await operator.audit_cascade("project", {"id": 1})
    print(f"After re-deleting: complete={audit.complete}")

    print("\n=== Retention ===")
    # Pretend 45 days have passed
    later = operator.clock() + timedelta(days=45)
    operator.clock = lambda: later
    report = await RetentionSweeper(operator, default_retention_days=30).sweep()
    print(f"Purged: {report.deleted_by_type()}")
    print(f"Remaining projects: {[p['id'] for p in store.adapter('project').all()]}")


if __name__ == "__main__":
    asyncio.run(main())
