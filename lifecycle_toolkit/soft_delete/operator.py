"""
Lifecycle operator: cascading soft delete, restore and cleanup.

The operator resolves the cascade configuration of an entity type, applies
the transition to the matching records through the entity store and then
walks the cascade edges. The primary records are the unit of atomicity:
a failure in one cascade branch is logged and recorded in the event trail,
but neither aborts the sibling branches nor fails the call.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..audit_trail.models import LifecycleAction, LifecycleEvent, utcnow
from ..audit_trail.storage import EventSink, LoggingEventSink
from ..config import LifecycleConfig, get_config
from .adapters import EntityAdapter, EntityStore, Record
from .exceptions import (
    CascadeDepthError,
    NotDeletedError,
    RecordNotFoundError,
    VersionConflictError,
)
from .filters import NOT_NULL, Filter, merge_filters
from .mixins import REASON_MAX_LENGTH
from .models import CascadeAudit, CascadeConfig, CascadeEdge, CleanupResult, LiveDependent
from .registry import CascadeRegistry, default_registry

logger = logging.getLogger(__name__)


class LifecycleOperator:
    """
    Soft delete engine over a graph of related entity types.

    The entity store is injected rather than looked up globally: construct
    it once at process start, hand it to the operator, and close it on
    shutdown.

    Example:
        >>> store = SQLEntityStore("sqlite:///app.db", MODELS)
        >>> await store.initialize()
        >>> operator = LifecycleOperator(store)
        >>> await operator.soft_delete("workspace", {"id": 7}, actor="u-1")
        >>> await operator.restore("workspace", {"id": 7})
        >>> await store.close()
    """

    def __init__(
        self,
        store: EntityStore,
        registry: Optional[CascadeRegistry] = None,
        sink: Optional[EventSink] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the operator.

        Args:
            store: Entity store holding one adapter per entity type
            registry: Cascade configuration; defaults to the built-in graph
            sink: Event sink receiving one event per invocation; defaults
                to one that writes to the logging hierarchy
            config: Toolkit configuration; defaults to the global one
            clock: Callable returning the current UTC time
        """
        self.store = store
        self.registry = registry if registry is not None else default_registry()
        self.sink = sink if sink is not None else LoggingEventSink()
        self.config = config or get_config()
        self.clock = clock or utcnow

    # Read filters

    def excluding_deleted(
        self, entity_type: str, filter: Optional[Filter] = None
    ) -> Filter:
        """
        Restrict a filter to live records.

        Every ordinary read path should route through this helper.

        Raises:
            NotConfiguredError: If the type is not registered
        """
        config = self.registry.lookup(entity_type)
        return merge_filters(filter, {config.deleted_at_field: None})

    def only_deleted(self, entity_type: str, filter: Optional[Filter] = None) -> Filter:
        """
        Restrict a filter to soft-deleted records.

        Raises:
            NotConfiguredError: If the type is not registered
        """
        config = self.registry.lookup(entity_type)
        return merge_filters(filter, {config.deleted_at_field: NOT_NULL})

    async def find_live(
        self, entity_type: str, filter: Optional[Filter] = None, limit: Optional[int] = None
    ) -> List[Record]:
        adapter = self.store.adapter(entity_type)
        return await adapter.find_many(self.excluding_deleted(entity_type, filter), limit)

    async def find_deleted(
        self, entity_type: str, filter: Optional[Filter] = None, limit: Optional[int] = None
    ) -> List[Record]:
        adapter = self.store.adapter(entity_type)
        return await adapter.find_many(self.only_deleted(entity_type, filter), limit)

    async def count_deleted(self, entity_type: str) -> int:
        """Count soft-deleted records of an entity type."""
        adapter = self.store.adapter(entity_type)
        return await adapter.count(self.only_deleted(entity_type))

    # Transitions

    async def soft_delete(
        self,
        entity_type: str,
        filter: Filter,
        cascade: Optional[bool] = None,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Record:
        """
        Soft delete the records matching ``filter`` and, by default, their dependents.

        Soft-deleting an already deleted record succeeds and overwrites its
        deletion metadata.

        Args:
            entity_type: Registered entity type
            filter: Filter selecting the target record(s)
            cascade: Whether to cascade; defaults to ``cascade_delete_enabled``
            actor: Who performed the deletion
            reason: Why the record was deleted

        Returns:
            The first updated record, in its post-transition state

        Raises:
            NotConfiguredError: The entity type is not registered
            RecordNotFoundError: The filter matches no record
            VersionConflictError: Concurrent writers kept changing the record
        """
        if cascade is None:
            cascade = self.config.cascade_delete_enabled
        updated = await self._transition(
            LifecycleAction.SOFT_DELETE, entity_type, filter, cascade, actor, reason
        )
        return updated[0]

    async def restore(
        self,
        entity_type: str,
        filter: Filter,
        cascade: bool = False,
        restored_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Record:
        """
        Restore soft-deleted records matching ``filter``.

        Only records that are currently soft-deleted are targeted. Dependents
        are restored only when ``cascade`` is requested.

        Returns:
            The first restored record, in its post-transition state

        Raises:
            NotConfiguredError: The entity type is not registered
            NotDeletedError: No currently soft-deleted record matches
            VersionConflictError: Concurrent writers kept changing the record
        """
        updated = await self._transition(
            LifecycleAction.RESTORE, entity_type, filter, cascade, restored_by, reason
        )
        return updated[0]

    async def _transition(
        self,
        action: LifecycleAction,
        entity_type: str,
        filter: Filter,
        cascade: bool,
        actor: Optional[str],
        reason: Optional[str],
        depth: int = 0,
        cause: Optional[str] = None,
    ) -> List[Record]:
        verb = "Soft delete" if action == LifecycleAction.SOFT_DELETE else "Restore"
        log_fields = {
            "entity_type": entity_type,
            "filter": filter,
            "actor": actor,
            "reason": reason,
            "cascade": cascade,
            "depth": depth,
        }

        try:
            if depth > self.config.max_cascade_depth:
                raise CascadeDepthError(entity_type, depth)

            config = self.registry.lookup(entity_type)
            adapter = self.store.adapter(entity_type)

            if action == LifecycleAction.SOFT_DELETE:
                target_filter = dict(filter)
            else:
                target_filter = merge_filters(filter, {config.deleted_at_field: NOT_NULL})

            targets = await adapter.find_many(target_filter)
            if not targets:
                if depth > 0:
                    # No dependents under this parent
                    return []
                if action == LifecycleAction.RESTORE:
                    raise NotDeletedError(entity_type, filter)
                raise RecordNotFoundError(entity_type, filter)

            data = self._transition_data(action, config, actor, reason)
            updated = []
            for target in targets:
                record = await self._apply(adapter, config, target, target_filter, data)
                if record is not None:
                    updated.append(record)

            if not updated:
                # Every target stopped matching between read and update
                if action == LifecycleAction.RESTORE:
                    raise NotDeletedError(entity_type, filter)
                raise RecordNotFoundError(entity_type, filter)

        except Exception as e:
            if depth == 0:
                logger.error(
                    f"{verb} failed for {entity_type}: {e}",
                    extra={**log_fields, "error": str(e)},
                )
                await self.record_event(
                    LifecycleEvent(
                        action=action,
                        entity_type=entity_type,
                        filter=filter,
                        actor=actor,
                        reason=reason,
                        cascade=cascade,
                        depth=depth,
                        success=False,
                        error_message=f"{type(e).__name__}: {e}",
                    )
                )
            raise

        record_ids = [r["id"] for r in updated]
        logger.info(
            f"{verb} completed for {entity_type}",
            extra={**log_fields, "record_ids": record_ids},
        )
        await self.record_event(
            LifecycleEvent(
                action=action,
                entity_type=entity_type,
                filter=filter,
                record_ids=record_ids,
                actor=actor,
                reason=reason,
                cascade=cascade,
                depth=depth,
            )
        )

        # Primary records are final before any cascade branch starts
        if cascade and config.cascade:
            # Dependents carry the caller's reason, not the chain of parents
            if depth == 0:
                cause = reason
            await self._cascade(action, entity_type, config, updated, actor, cause, depth)

        return updated

    def _transition_data(
        self,
        action: LifecycleAction,
        config: CascadeConfig,
        actor: Optional[str],
        reason: Optional[str],
    ) -> Dict[str, Any]:
        now = self.clock()
        data: Dict[str, Any]
        if action == LifecycleAction.SOFT_DELETE:
            data = {config.deleted_at_field: now}
            if actor:
                data["deleted_by"] = actor
            if reason:
                data["delete_reason"] = reason
        else:
            data = {config.deleted_at_field: None, "restored_at": now}
            if actor:
                data["restored_by"] = actor
            if reason:
                data["restore_reason"] = reason
        return data

    async def _apply(
        self,
        adapter: EntityAdapter,
        config: CascadeConfig,
        target: Record,
        target_filter: Filter,
        data: Dict[str, Any],
    ) -> Optional[Record]:
        """
        Compare-and-swap ``data`` onto one record.

        Returns:
            The post-transition record, or None if it no longer matches the
            target filter

        Raises:
            VersionConflictError: The version kept moving past the retry limit
        """
        version_field = config.version_field
        record = target
        attempts = 0

        while True:
            attempts += 1
            guard = merge_filters(target_filter, {"id": record["id"]})
            changes = dict(data)
            if version_field:
                current = record.get(version_field)
                guard[version_field] = current
                changes[version_field] = (current or 0) + 1

            if await adapter.update_many(guard, changes):
                return {**record, **changes}

            if not version_field or attempts > self.config.max_conflict_retries:
                if version_field:
                    raise VersionConflictError(adapter.entity_type, record["id"], attempts)
                return None

            logger.debug(
                f"Version conflict on {adapter.entity_type} {record['id']}, retrying",
                extra={"entity_type": adapter.entity_type, "attempt": attempts},
            )
            fresh = await adapter.find_first(
                merge_filters(target_filter, {"id": record["id"]})
            )
            if fresh is None:
                return None
            record = fresh

    async def _cascade(
        self,
        action: LifecycleAction,
        entity_type: str,
        config: CascadeConfig,
        parents: List[Record],
        actor: Optional[str],
        reason: Optional[str],
        depth: int,
    ) -> None:
        branches = [
            self._run_branch(action, entity_type, parent, edge, actor, reason, depth)
            for parent in parents
            for edge in config.cascade
        ]
        if self.config.concurrent_cascades:
            await asyncio.gather(*branches)
        else:
            for branch in branches:
                await branch

    async def _run_branch(
        self,
        action: LifecycleAction,
        parent_type: str,
        parent: Record,
        edge: CascadeEdge,
        actor: Optional[str],
        reason: Optional[str],
        depth: int,
    ) -> None:
        parent_id = parent["id"]
        cascade_reason = f"Cascade from {parent_type} {parent_id}"
        if reason:
            cascade_reason = f"{cascade_reason}: {reason}"
        if len(cascade_reason) > REASON_MAX_LENGTH:
            cascade_reason = cascade_reason[: REASON_MAX_LENGTH - 3] + "..."

        try:
            await self._transition(
                action,
                edge.entity_type,
                {edge.foreign_key: parent_id},
                True,
                actor,
                cascade_reason,
                depth + 1,
                cause=reason,
            )
        except Exception as e:
            verb = "delete" if action == LifecycleAction.SOFT_DELETE else "restore"
            logger.warning(
                f"Failed to cascade {verb} {edge.entity_type}",
                extra={
                    "entity_type": edge.entity_type,
                    "foreign_key": edge.foreign_key,
                    "parent_type": parent_type,
                    "parent_id": parent_id,
                    "error": str(e),
                },
            )
            await self.record_event(
                LifecycleEvent(
                    action=LifecycleAction.CASCADE_FAILED,
                    entity_type=edge.entity_type,
                    filter={edge.foreign_key: parent_id},
                    actor=actor,
                    reason=cascade_reason,
                    cascade=True,
                    depth=depth + 1,
                    success=False,
                    error_message=f"{type(e).__name__}: {e}",
                    details={
                        "transition": action.value,
                        "parent_type": parent_type,
                        "parent_id": parent_id,
                    },
                )
            )

    # Retention

    async def cleanup(
        self,
        entity_type: str,
        older_than_days: Optional[int] = None,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
    ) -> CleanupResult:
        """
        Permanently delete records soft-deleted longer than the retention window.

        Selects at most ``batch_size`` candidates and deletes exactly those
        ids. Does not cascade: each entity type is purged on its own.

        Args:
            entity_type: Registered entity type
            older_than_days: Retention window; defaults to the configured one
            batch_size: Maximum records per call; defaults to the configured one
            dry_run: Return the candidates without touching storage

        Returns:
            Cleanup result with the candidates and the number removed

        Raises:
            NotConfiguredError: The entity type is not registered
            ValueError: Negative window or non-positive batch size
        """
        if older_than_days is None:
            older_than_days = self.config.default_retention_days
        if batch_size is None:
            batch_size = self.config.cleanup_batch_size
        if older_than_days < 0:
            raise ValueError("older_than_days must not be negative")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        cutoff = self.clock() - timedelta(days=older_than_days)
        log_fields = {
            "entity_type": entity_type,
            "older_than_days": older_than_days,
            "cutoff": cutoff.isoformat(),
            "batch_size": batch_size,
            "dry_run": dry_run,
        }

        try:
            config = self.registry.lookup(entity_type)
            adapter = self.store.adapter(entity_type)
            expired = {config.deleted_at_field: {"not": None, "lt": cutoff}}

            logger.info(f"Cleaning up soft-deleted {entity_type} records", extra=log_fields)
            candidates = await adapter.find_many(
                expired, limit=batch_size, order_by=config.deleted_at_field
            )
            result = CleanupResult(
                entity_type=entity_type,
                cutoff=cutoff,
                dry_run=dry_run,
                candidate_records=candidates,
            )

            if not candidates:
                logger.info(f"No old soft-deleted {entity_type} records found for cleanup")
                return result

            if dry_run:
                logger.info(
                    f"Dry run: Would delete {len(candidates)} {entity_type} records",
                    extra={**log_fields, "record_ids": result.candidate_ids},
                )
            else:
                # Records restored since selection no longer match the expiry guard
                result.deleted_count = await adapter.delete_many(
                    merge_filters(expired, {"id": {"in": result.candidate_ids}})
                )
                logger.info(
                    f"Permanently deleted {result.deleted_count} {entity_type} records",
                    extra={**log_fields, "record_ids": result.candidate_ids},
                )

        except Exception as e:
            logger.error(
                f"Cleanup failed for {entity_type}: {e}",
                extra={**log_fields, "error": str(e)},
            )
            await self.record_event(
                LifecycleEvent(
                    action=LifecycleAction.CLEANUP,
                    entity_type=entity_type,
                    success=False,
                    error_message=f"{type(e).__name__}: {e}",
                    details=log_fields,
                )
            )
            raise

        await self.record_event(
            LifecycleEvent(
                action=LifecycleAction.CLEANUP,
                entity_type=entity_type,
                record_ids=result.candidate_ids if not dry_run else [],
                details={
                    **log_fields,
                    "deleted_count": result.deleted_count,
                    "candidates": len(candidates),
                },
            )
        )
        return result

    # Auditing

    async def audit_cascade(self, entity_type: str, filter: Filter) -> CascadeAudit:
        """
        Find dependents still live under soft-deleted parents.

        Cascades are best-effort, so a deleted subtree may keep live
        records after a failed branch. Soft-deleting the parent again
        closes the gap.

        Args:
            entity_type: Registered entity type of the parents
            filter: Filter selecting the parents; only deleted ones are checked

        Returns:
            Audit listing every live dependent found
        """
        adapter = self.store.adapter(entity_type)
        parents = await adapter.find_many(self.only_deleted(entity_type, filter))
        audit = CascadeAudit(
            entity_type=entity_type, parent_ids=[p["id"] for p in parents]
        )

        pending = [(entity_type, parent, 0) for parent in parents]
        while pending:
            parent_type, parent, depth = pending.pop()
            if depth >= self.config.max_cascade_depth:
                continue
            for edge in self.registry.lookup(parent_type).cascade:
                dependent_config = self.registry.lookup(edge.entity_type)
                dependents = await self.store.adapter(edge.entity_type).find_many(
                    {edge.foreign_key: parent["id"]}
                )
                for dependent in dependents:
                    audit.checked += 1
                    if dependent.get(dependent_config.deleted_at_field) is None:
                        audit.live_dependents.append(
                            LiveDependent(
                                entity_type=edge.entity_type,
                                record_id=dependent["id"],
                                parent_type=parent_type,
                                parent_id=parent["id"],
                                foreign_key=edge.foreign_key,
                            )
                        )
                    else:
                        pending.append((edge.entity_type, dependent, depth + 1))

        if audit.live_dependents:
            logger.warning(
                f"Cascade gap under {entity_type}: "
                f"{len(audit.live_dependents)} live dependent(s)",
                extra={"entity_type": entity_type, "by_type": audit.by_type()},
            )
        return audit

    async def record_event(self, event: LifecycleEvent) -> None:
        try:
            await self.sink.emit(event)
        except Exception as e:
            # The event trail must never change the outcome of a transition
            logger.error(
                f"Failed to record lifecycle event: {e}",
                extra={"event": event.log_fields()},
            )
