"""
Retention sweeper built on the operator's cleanup primitive.

A sweep visits every registered entity type, dependents before parents,
and purges soft-deleted records older than each type's retention window in
batches. Cascades are not repeated here: they were applied when the records
were soft-deleted, so a subtree is reclaimed by sweeping each of its types.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, Optional

from ..audit_trail.models import LifecycleAction, LifecycleEvent
from .models import RetentionPolicy, SweepReport
from .operator import LifecycleOperator

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Scheduled or ad-hoc purge of expired soft-deleted records."""

    def __init__(
        self,
        operator: LifecycleOperator,
        policies: Optional[Iterable[RetentionPolicy]] = None,
        default_retention_days: Optional[int] = None,
        default_batch_size: Optional[int] = None,
    ):
        """
        Initialize the sweeper.

        Args:
            operator: Operator whose cleanup primitive performs the purge
            policies: Per-type overrides of the default policy
            default_retention_days: Window for types without a policy
            default_batch_size: Batch size for types without a policy
        """
        self.operator = operator
        self.default_retention_days = (
            default_retention_days
            if default_retention_days is not None
            else operator.config.default_retention_days
        )
        self.default_batch_size = default_batch_size or operator.config.cleanup_batch_size
        self.policies: Dict[str, RetentionPolicy] = {}
        for policy in policies or ():
            self.register_policy(policy)

    def register_policy(self, policy: RetentionPolicy) -> None:
        """
        Register a retention policy for an entity type.

        Raises:
            NotConfiguredError: If the type is not in the cascade registry
        """
        self.operator.registry.lookup(policy.entity_type)
        self.policies[policy.entity_type] = policy

    def policy_for(self, entity_type: str) -> RetentionPolicy:
        policy = self.policies.get(entity_type)
        if policy is None:
            policy = RetentionPolicy(
                entity_type=entity_type,
                retention_days=self.default_retention_days,
                batch_size=self.default_batch_size,
            )
        return policy

    async def sweep(
        self,
        entity_types: Optional[Iterable[str]] = None,
        dry_run: bool = False,
    ) -> SweepReport:
        """
        Purge expired records for the given types, or every registered type.

        A failure for one type is recorded in the report and the sweep moves
        on to the next type.

        Args:
            entity_types: Types to sweep; defaults to the whole registry
            dry_run: Report candidates without touching storage

        Returns:
            Report with every cleanup batch, skipped types and errors
        """
        order = self.operator.registry.purge_order()
        if entity_types is not None:
            wanted = set(entity_types)
            for entity_type in wanted:
                # Unknown types fail fast before anything is purged
                self.operator.registry.lookup(entity_type)
            order = [t for t in order if t in wanted]

        report = SweepReport(started_at=self.operator.clock(), dry_run=dry_run)
        logger.info(
            f"Starting retention sweep over {len(order)} entity types",
            extra={"entity_types": order, "dry_run": dry_run},
        )

        for entity_type in order:
            policy = self.policy_for(entity_type)
            if not policy.purge_allowed:
                report.skipped.append(entity_type)
                continue
            try:
                await self._sweep_type(policy, report, dry_run)
            except Exception as e:
                report.errors[entity_type] = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"Retention sweep failed for {entity_type}",
                    extra={"entity_type": entity_type, "error": str(e)},
                )

        report.finished_at = self.operator.clock()
        logger.info(
            f"Retention sweep finished: {report.total_deleted} records purged",
            extra={
                "deleted_by_type": report.deleted_by_type(),
                "errors": report.errors,
                "dry_run": dry_run,
            },
        )
        await self.operator.record_event(
            LifecycleEvent(
                action=LifecycleAction.SWEEP,
                entity_type="*",
                success=not report.errors,
                error_message="; ".join(
                    f"{t}: {msg}" for t, msg in report.errors.items()
                )
                or None,
                details={
                    "dry_run": dry_run,
                    "deleted_by_type": report.deleted_by_type(),
                    "skipped": report.skipped,
                },
            )
        )
        return report

    async def _sweep_type(
        self, policy: RetentionPolicy, report: SweepReport, dry_run: bool
    ) -> None:
        batches = 0
        while True:
            result = await self.operator.cleanup(
                policy.entity_type,
                older_than_days=policy.retention_days,
                batch_size=policy.batch_size,
                dry_run=dry_run,
            )
            report.add_result(result)
            batches += 1

            if dry_run or len(result.candidate_records) < policy.batch_size:
                return
            if result.deleted_count == 0:
                # Candidates were all restored concurrently; stop rather than spin
                return
            if policy.max_batches is not None and batches >= policy.max_batches:
                return

    async def run_periodic(
        self,
        interval_seconds: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
        on_report: Optional[Callable[[SweepReport], None]] = None,
    ) -> Optional[SweepReport]:
        """
        Sweep repeatedly until ``stop_event`` is set.

        Reports are handed to ``on_report`` as they complete and are not
        retained, so a long-running scheduler holds at most one.

        Args:
            interval_seconds: Pause between sweeps; defaults to the configured one
            stop_event: Event that ends the loop
            on_report: Callback receiving each completed report

        Returns:
            Report of the last completed sweep, or None if none ran
        """
        interval = (
            interval_seconds
            if interval_seconds is not None
            else self.operator.config.sweep_interval_seconds
        )
        stop_event = stop_event or asyncio.Event()
        last: Optional[SweepReport] = None

        while not stop_event.is_set():
            last = await self.sweep()
            if on_report is not None:
                on_report(last)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        return last
