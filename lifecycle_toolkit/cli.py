#!/usr/bin/env python3
"""
Command-line interface for Lifecycle Toolkit.

Provides soft delete, restore, retention and event trail tooling against the
configured database.
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Coroutine, Optional, Tuple, TypeVar

import click
import pandas as pd  # type: ignore[import-untyped]
import yaml  # type: ignore[import-untyped]
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .audit_trail import EventQuery, LifecycleAction, get_event_sink
from .config import EventBackend, LifecycleConfig, configure_logging, get_config
from .schema import MODELS
from .soft_delete import (
    LifecycleOperator,
    RetentionSweeper,
    SQLEntityStore,
    default_registry,
)

console = Console()

T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Synchronous wrapper for the async engine."""
    return asyncio.run(coro)


@asynccontextmanager
async def open_operator(config: LifecycleConfig) -> AsyncIterator[LifecycleOperator]:
    """Open the entity store and event sink described by ``config``."""
    if not config.database_url:
        raise ValueError(
            "No database configured. Set LIFECYCLE_DATABASE_URL or database_url."
        )

    sink = await get_event_sink(**config.get_sink_config())
    try:
        async with SQLEntityStore(config.database_url, MODELS) as store:
            yield LifecycleOperator(store, sink=sink, config=config)
    finally:
        await sink.close()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # click.DateTime yields naive values; treat them as UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _format_time(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return "" if value is None else str(value)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity to stderr")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Lifecycle Toolkit - Cascading soft delete for related records."""
    if verbose:
        configure_logging("DEBUG")
    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Lifecycle Toolkit[/bold blue] v{__version__}\n"
                "[dim]Cascading soft delete, restore and retention[/dim]\n\n"
                "Use [bold]lifecycle --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect toolkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config_dict = get_config().to_dict()

        if format == "json":
            console.print_json(data=config_dict)
        elif format == "yaml":
            console.print(yaml.dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="Lifecycle Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            categories = {
                "General": [
                    "application_name",
                    "environment",
                    "database_url",
                    "log_level",
                ],
                "Cascade": [
                    "cascade_delete_enabled",
                    "max_cascade_depth",
                    "concurrent_cascades",
                    "max_conflict_retries",
                ],
                "Retention": [
                    "default_retention_days",
                    "cleanup_batch_size",
                    "sweep_interval_seconds",
                ],
                "Event Trail": [
                    "event_backend",
                    "event_file_path",
                    "event_database_url",
                ],
            }

            for category, settings in categories.items():
                table.add_row(f"[bold]{category}[/bold]", "")
                for setting in settings:
                    value = config_dict.get(setting)
                    if value is None:
                        value = "[dim]Not configured[/dim]"
                    elif isinstance(value, bool):
                        value = "✓" if value else "✗"
                    table.add_row(f"  {setting}", str(value))

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@cli.group()
def registry() -> None:
    """Inspect the cascade registry."""
    pass


@registry.command("show")
def registry_show() -> None:
    """Display the cascade graph and the purge order."""
    cascade_registry = default_registry()

    tree = Tree("[bold]Cascade Registry[/bold]")
    for cascade_config in cascade_registry:
        if not cascade_config.cascade:
            continue
        branch = tree.add(f"[cyan]{cascade_config.entity_type}[/cyan]")
        for edge in cascade_config.cascade:
            branch.add(f"[green]{edge.entity_type}[/green] [dim]via {edge.foreign_key}[/dim]")

    console.print(tree)
    console.print(
        f"\n[bold]Purge order:[/bold] {', '.join(cascade_registry.purge_order())}"
    )


@cli.command()
@click.argument("entity_type")
@click.argument("record_id", type=int)
@click.option("--actor", help="Who is deleting the record")
@click.option("--reason", help="Why the record is deleted")
@click.option("--no-cascade", is_flag=True, help="Leave dependents untouched")
def delete(
    entity_type: str,
    record_id: int,
    actor: Optional[str],
    reason: Optional[str],
    no_cascade: bool,
) -> None:
    """Soft delete a record and, by default, its dependents."""

    async def _delete() -> Any:
        async with open_operator(get_config()) as operator:
            return await operator.soft_delete(
                entity_type,
                {"id": record_id},
                cascade=False if no_cascade else None,
                actor=actor,
                reason=reason,
            )

    try:
        record = run_async(_delete())
        console.print(f"[green]✓[/green] Soft-deleted {entity_type} {record_id}")
        console.print_json(data=record, default=str)
    except Exception as e:
        console.print(f"[red]Error deleting {entity_type} {record_id}: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("entity_type")
@click.argument("record_id", type=int)
@click.option("--by", "restored_by", help="Who is restoring the record")
@click.option("--reason", help="Why the record is restored")
@click.option("--cascade", is_flag=True, help="Also restore soft-deleted dependents")
def restore(
    entity_type: str,
    record_id: int,
    restored_by: Optional[str],
    reason: Optional[str],
    cascade: bool,
) -> None:
    """Restore a soft-deleted record."""

    async def _restore() -> Any:
        async with open_operator(get_config()) as operator:
            return await operator.restore(
                entity_type,
                {"id": record_id},
                cascade=cascade,
                restored_by=restored_by,
                reason=reason,
            )

    try:
        record = run_async(_restore())
        console.print(f"[green]✓[/green] Restored {entity_type} {record_id}")
        console.print_json(data=record, default=str)
    except Exception as e:
        console.print(f"[red]Error restoring {entity_type} {record_id}: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("entity_type")
@click.option("--older-than-days", type=int, help="Retention window in days")
@click.option("--batch-size", type=int, help="Maximum records to purge")
@click.option("--dry-run", is_flag=True, help="Report candidates without deleting")
@click.option("--format", type=click.Choice(["table", "json", "csv"]), default="table")
def cleanup(
    entity_type: str,
    older_than_days: Optional[int],
    batch_size: Optional[int],
    dry_run: bool,
    format: str,
) -> None:
    """Permanently delete long soft-deleted records of one type."""

    async def _cleanup() -> Any:
        async with open_operator(get_config()) as operator:
            return await operator.cleanup(
                entity_type,
                older_than_days=older_than_days,
                batch_size=batch_size,
                dry_run=dry_run,
            )

    try:
        result = run_async(_cleanup())

        if format == "json":
            console.print_json(data=result.model_dump(mode="json"))
        elif format == "csv":
            df = pd.DataFrame(result.candidate_records)
            print(df.to_csv(index=False))
        else:
            verb = "Would delete" if dry_run else "Deleted"
            count = len(result.candidate_records) if dry_run else result.deleted_count
            table = Table(title=f"Expired {entity_type} records")
            table.add_column("ID", style="cyan")
            table.add_column("Deleted At", style="yellow")
            table.add_column("Deleted By", style="green")
            table.add_column("Reason", style="dim")
            for record in result.candidate_records:
                table.add_row(
                    str(record["id"]),
                    _format_time(record.get("deleted_at")),
                    record.get("deleted_by") or "",
                    record.get("delete_reason") or "",
                )
            console.print(table)
            console.print(
                f"{verb} {count} {entity_type} record(s) soft-deleted before "
                f"{_format_time(result.cutoff)}"
            )

    except Exception as e:
        console.print(f"[red]Error cleaning up {entity_type}: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--type", "entity_types", multiple=True, help="Entity type to sweep")
@click.option("--dry-run", is_flag=True, help="Report candidates without deleting")
def sweep(entity_types: Tuple[str, ...], dry_run: bool) -> None:
    """Run the retention sweeper over the registered entity types."""

    async def _sweep() -> Any:
        async with open_operator(get_config()) as operator:
            sweeper = RetentionSweeper(operator)
            return await sweeper.sweep(entity_types or None, dry_run=dry_run)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Sweeping expired records...", total=None)
        try:
            report = run_async(_sweep())
        except Exception as e:
            progress.stop()
            console.print(f"[red]Error running retention sweep: {e}[/red]")
            sys.exit(1)

    table = Table(title="Retention Sweep" + (" (dry run)" if dry_run else ""))
    table.add_column("Entity Type", style="cyan")
    table.add_column("Batches", style="dim")
    table.add_column("Candidates", style="yellow")
    table.add_column("Deleted", style="green")
    for entity_type, batches in report.results.items():
        table.add_row(
            entity_type,
            str(len(batches)),
            str(sum(len(r.candidate_records) for r in batches)),
            str(sum(r.deleted_count for r in batches)),
        )
    console.print(table)

    if report.skipped:
        console.print(f"[dim]Skipped: {', '.join(report.skipped)}[/dim]")

    if report.errors:
        console.print("\n[red]✗ Sweep finished with errors:[/red]")
        for entity_type, message in report.errors.items():
            console.print(f"  [red]• {entity_type}: {message}[/red]")
        sys.exit(1)

    console.print(f"\n[green]✓ Purged {report.total_deleted} record(s)[/green]")


@cli.command()
@click.argument("entity_type")
@click.argument("record_id", type=int)
def audit(entity_type: str, record_id: int) -> None:
    """Check a soft-deleted record for dependents the cascade missed."""

    async def _audit() -> Any:
        async with open_operator(get_config()) as operator:
            return await operator.audit_cascade(entity_type, {"id": record_id})

    try:
        result = run_async(_audit())
    except Exception as e:
        console.print(f"[red]Error auditing {entity_type} {record_id}: {e}[/red]")
        sys.exit(1)

    if not result.parent_ids:
        console.print(
            f"[yellow]{entity_type} {record_id} is not soft-deleted; "
            f"nothing to audit[/yellow]"
        )
        return

    if result.complete:
        console.print(
            f"[green]✓ Cascade complete: {result.checked} dependent(s) checked[/green]"
        )
        return

    table = Table(title=f"Live dependents under {entity_type} {record_id}")
    table.add_column("Entity Type", style="cyan")
    table.add_column("ID", style="yellow")
    table.add_column("Parent", style="blue")
    table.add_column("Foreign Key", style="dim")
    for dependent in result.live_dependents:
        table.add_row(
            dependent.entity_type,
            str(dependent.record_id),
            f"{dependent.parent_type}:{dependent.parent_id}",
            dependent.foreign_key,
        )
    console.print(table)
    console.print(
        f"\n[yellow]⚠ Soft delete {entity_type} {record_id} again "
        f"to close the gap[/yellow]"
    )
    sys.exit(1)


@cli.group()
def events() -> None:
    """Lifecycle event trail reporting."""
    pass


@events.command("export")
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
@click.option("--start-date", type=click.DateTime(), help="Start date for export")
@click.option("--end-date", type=click.DateTime(), help="End date for export")
@click.option(
    "--action",
    "actions",
    multiple=True,
    type=click.Choice([a.value for a in LifecycleAction]),
    help="Filter by action",
)
@click.option("--entity-type", "entity_types", multiple=True, help="Filter by type")
@click.option("--failures-only", is_flag=True, help="Only export failed actions")
@click.option("--limit", type=int, default=10000, help="Maximum events to export")
def events_export(
    output: str,
    format: str,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    actions: Tuple[str, ...],
    entity_types: Tuple[str, ...],
    failures_only: bool,
    limit: int,
) -> None:
    """Export the lifecycle event trail."""

    async def _query() -> Any:
        config = get_config()
        if config.event_backend in (EventBackend.LOGGING, EventBackend.MEMORY):
            raise ValueError(
                f"Event export needs a persistent backend, "
                f"not '{config.event_backend.value}'"
            )
        sink = await get_event_sink(**config.get_sink_config())
        try:
            return await sink.query(
                EventQuery(
                    start_date=_as_utc(start_date),
                    end_date=_as_utc(end_date),
                    actions=[LifecycleAction(a) for a in actions] or None,
                    entity_types=list(entity_types) or None,
                    failures_only=failures_only,
                    limit=limit,
                )
            )
        finally:
            await sink.close()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Exporting lifecycle events...", total=None)

        try:
            found = run_async(_query())
            progress.update(
                task, description=f"Found {len(found)} events, exporting..."
            )

            df = pd.DataFrame([event.model_dump(mode="json") for event in found])

            output_path = Path(output)
            if format == "json":
                df.to_json(output_path, orient="records", date_format="iso", indent=2)
            elif format == "excel":
                df.to_excel(output_path, index=False, engine="openpyxl")
            else:  # csv
                df.to_csv(output_path, index=False)

            progress.stop()
            console.print(
                f"[green]✓ Exported {len(found)} lifecycle events to "
                f"{output_path}[/green]"
            )

        except Exception as e:
            progress.stop()
            console.print(f"[red]Error exporting events: {e}[/red]")
            sys.exit(1)


@cli.command()
def doctor() -> None:
    """Run diagnostic checks on the toolkit installation."""
    console.print("[bold]Running Lifecycle Toolkit diagnostics...[/bold]\n")

    checks_passed = 0
    checks_failed = 0

    # Check 1: Configuration
    try:
        config = get_config()
        console.print("[green]✓[/green] Configuration loaded successfully")
        checks_passed += 1
    except Exception as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        console.print("\n[yellow]⚠ Some issues detected - review output above[/yellow]")
        sys.exit(1)

    # Check 2: Cascade registry
    try:
        cascade_registry = default_registry()
        console.print(
            f"[green]✓[/green] Cascade registry valid "
            f"({len(cascade_registry)} entity types)"
        )
        checks_passed += 1
    except Exception as e:
        console.print(f"[red]✗[/red] Cascade registry error: {e}")
        checks_failed += 1

    # Check 3: Database connectivity
    if config.database_url:
        try:
            from sqlalchemy import create_engine, text

            engine = create_engine(config.database_url)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            engine.dispose()
            console.print("[green]✓[/green] Database connection successful")
            checks_passed += 1
        except Exception as e:
            console.print(f"[red]✗[/red] Database connection failed: {e}")
            checks_failed += 1
    else:
        console.print(
            "[yellow]⚠[/yellow] No database configured "
            "(LIFECYCLE_DATABASE_URL not set)"
        )

    # Check 4: Event directory, before the sink creates it
    if config.event_backend == EventBackend.FILE:
        event_dir = Path(config.event_file_path)
        if event_dir.is_dir():
            console.print(f"[green]✓[/green] Event directory exists: {event_dir}")
            checks_passed += 1
        elif event_dir.exists():
            console.print(f"[red]✗[/red] Event path is not a directory: {event_dir}")
            checks_failed += 1
        else:
            console.print(
                f"[yellow]⚠[/yellow] Event directory missing, "
                f"it will be created: {event_dir}"
            )

    # Check 5: Event sink
    try:

        async def _open_sink() -> None:
            sink = await get_event_sink(**config.get_sink_config())
            await sink.close()

        run_async(_open_sink())
        console.print(
            f"[green]✓[/green] Event sink initialized ({config.event_backend.value})"
        )
        checks_passed += 1
    except Exception as e:
        console.print(f"[red]✗[/red] Event sink error: {e}")
        checks_failed += 1

    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Checks passed: [green]{checks_passed}[/green]")
    console.print(f"  Checks failed: [red]{checks_failed}[/red]")

    if checks_failed == 0:
        console.print("\n[green]✓ All systems operational[/green]")
    else:
        console.print("\n[yellow]⚠ Some issues detected - review output above[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    cli()
