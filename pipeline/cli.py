"""
Catalog Sync - CLI Entry Point

Operator controls for the catalog sync pipeline.

Usage:
    # Run a sync and follow its progress
    catalog-sync sync --batch-size 50

    # Recent runs and aggregate statistics
    catalog-sync runs --recent 7
    catalog-sync stats --recent 30

    # Attach to, or cancel, a batch dispatched elsewhere
    catalog-sync monitor <batch-id>
    catalog-sync cancel <batch-id>
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from core.config import settings
from core.database import async_session_maker, engine, init_models
from core.exceptions import BatchNotFoundError, FetchFailure
from core.logging import setup_logging
from models.base import SyncStatus, SyncType
from pipeline.coordinator import BatchCoordinator
from pipeline.ledger import RunLedger
from pipeline.monitor import ProgressMonitor
from pipeline.service import CatalogSyncService
from pipeline.upsert import UpsertEngine
from schemas.sync import BatchSnapshot

app = typer.Typer(
    name="catalog-sync",
    help="Fetch and reconcile the product catalog",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    SyncStatus.STARTED: "yellow",
    SyncStatus.COMPLETED: "green",
    SyncStatus.FAILED: "red",
}


def format_seconds(seconds: float) -> str:
    """Human duration: ``1.5s``, ``2m 3.0s``, ``1h 2m 3.0s``."""
    if seconds < 60:
        return f"{round(seconds, 1)}s"

    minutes = int(seconds // 60)
    remaining = round(seconds % 60, 1)
    if minutes < 60:
        return f"{minutes}m {remaining}s"

    return f"{minutes // 60}h {minutes % 60}m {remaining}s"


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=not console.is_terminal,
    )


async def _follow(monitor: ProgressMonitor, batch_id: str, show_progress: bool) -> BatchSnapshot:
    if not show_progress:
        return await monitor.watch(batch_id)

    with _progress() as progress:
        task = progress.add_task("[cyan]Processing products...", total=100)

        def on_snapshot(snapshot: BatchSnapshot) -> None:
            progress.update(
                task,
                completed=snapshot.progress,
                description=(
                    f"[cyan]{snapshot.processed_jobs}/{snapshot.total_jobs} products "
                    f"({snapshot.failed_jobs} failed)"
                ),
            )

        return await monitor.watch(batch_id, on_snapshot=on_snapshot)


def _print_snapshot(snapshot: BatchSnapshot) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Batch", snapshot.batch_id)
    table.add_row("Total jobs", str(snapshot.total_jobs))
    table.add_row("Pending jobs", str(snapshot.pending_jobs))
    table.add_row("Processed jobs", str(snapshot.processed_jobs))
    table.add_row("Failed jobs", str(snapshot.failed_jobs))
    table.add_row("Progress", f"{snapshot.progress}%")
    table.add_row("Finished", "yes" if snapshot.finished else "no")
    table.add_row("Cancelled", "yes" if snapshot.cancelled else "no")
    console.print(table)


def _standalone_coordinator() -> BatchCoordinator:
    return BatchCoordinator(async_session_maker, UpsertEngine(async_session_maker))


@app.command()
def sync(
    batch_size: int = typer.Option(
        settings.SYNC_BATCH_SIZE, "--batch-size", "-b", min=1, help="Products per chunk"
    ),
    source_url: Optional[str] = typer.Option(
        None, "--source-url", "-s", help="Catalog endpoint override"
    ),
    sync_type: str = typer.Option(
        SyncType.MANUAL.value, "--sync-type", "-t", help="Run kind recorded in the sync log"
    ),
    no_progress: bool = typer.Option(
        False, "--no-progress", help="Do not render the progress bar"
    ),
) -> None:
    """
    Fetch the catalog and reconcile it into the local store.

    The batch runs inside this process, so the command follows it until it
    finishes. If the monitor gives up first, the remaining units are
    cancelled.
    """
    setup_logging()
    console.print("[bold]Starting product synchronization...[/bold]")
    console.print(f"Batch size: {batch_size}")

    async def run_sync() -> int:
        service = CatalogSyncService(async_session_maker)
        try:
            result = await service.sync(sync_type=sync_type, batch_size=batch_size, source_url=source_url)
        except FetchFailure as e:
            console.print(f"[red]Product synchronization failed: {e.message}[/red]")
            return 1

        console.print(
            f"Dispatched {result.total_products} products in {result.total_batches} batches "
            f"(run {result.run_id}, batch {result.batch_id})"
        )

        handle = service.coordinator.get_handle(result.batch_id)
        monitor = ProgressMonitor(service.coordinator)
        snapshot = await _follow(monitor, result.batch_id, show_progress=not no_progress)

        if snapshot.timed_out:
            console.print("[yellow]Monitor budget exhausted; cancelling remaining products[/yellow]")
            await service.coordinator.cancel(result.batch_id)
        if handle is not None:
            snapshot = await handle.wait()

        _print_snapshot(snapshot)
        run = await service.ledger.get(result.run_id)
        if run is None or run.status != SyncStatus.COMPLETED:
            console.print(f"[red]Sync failed: {run.error_message if run else 'run not found'}[/red]")
            return 1

        console.print(
            f"[green]Product synchronization completed successfully![/green] "
            f"created={run.products_created} updated={run.products_updated} failed={run.products_failed}"
        )
        return 0

    async def main() -> int:
        try:
            return await run_sync()
        finally:
            await engine.dispose()

    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync interrupted by user[/yellow]")
        raise typer.Exit(130)
    raise typer.Exit(exit_code)


@app.command()
def runs(
    recent: int = typer.Option(7, "--recent", "-r", min=0, help="Show runs from the last N days"),
    status: Optional[SyncStatus] = typer.Option(None, "--status", help="Filter by status"),
    sync_type: Optional[str] = typer.Option(None, "--sync-type", "-t", help="Filter by run kind"),
) -> None:
    """List recent sync runs."""
    sync_runs = asyncio.run(RunLedger(async_session_maker).recent(recent, status=status, sync_type=sync_type))

    if not sync_runs:
        console.print(f"[yellow]No sync logs found for the last {recent} days.[/yellow]")
        return

    table = Table(title=f"Sync Logs (Last {recent} days)")
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("Status")
    for column in ("Products", "Created", "Updated", "Failed"):
        table.add_column(column, justify="right")
    table.add_column("Duration")
    table.add_column("Started", style="dim")

    for run in sync_runs:
        style = STATUS_STYLES.get(run.status, "")
        table.add_row(
            str(run.id),
            run.sync_type,
            f"[{style}]{run.status.value}[/{style}]",
            str(run.total_products_fetched),
            str(run.products_created),
            str(run.products_updated),
            str(run.products_failed),
            run.duration_formatted,
            run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command()
def stats(
    recent: int = typer.Option(30, "--recent", "-r", min=0, help="Aggregate over the last N days"),
) -> None:
    """Show aggregate sync statistics."""
    summary = asyncio.run(RunLedger(async_session_maker).stats(recent))

    table = Table(title=f"Sync Statistics (Last {recent} days)", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Total Syncs", str(summary.total_syncs))
    table.add_row("Successful Syncs", str(summary.successful_syncs))
    table.add_row("Failed Syncs", str(summary.failed_syncs))
    table.add_row("Success Rate", f"{summary.success_rate}%")
    table.add_row("Total Products", f"{summary.total_products:,}")
    table.add_row("Products Created", f"{summary.total_created:,}")
    table.add_row("Products Updated", f"{summary.total_updated:,}")
    table.add_row("Products Failed", f"{summary.total_failed:,}")
    table.add_row("Average Duration", format_seconds(summary.avg_duration_seconds))

    console.print(table)


@app.command()
def monitor(
    batch_id: str = typer.Argument(..., help="Batch correlation id"),
    interval: float = typer.Option(settings.MONITOR_INTERVAL, "--interval", "-i", help="Seconds between polls"),
    max_attempts: int = typer.Option(settings.MONITOR_MAX_ATTEMPTS, "--max-attempts", "-n", min=1, help="Poll budget"),
) -> None:
    """Follow the progress of a dispatched batch."""
    progress_monitor = ProgressMonitor(_standalone_coordinator(), interval=interval, max_attempts=max_attempts)

    try:
        snapshot = asyncio.run(_follow(progress_monitor, batch_id, show_progress=True))
    except BatchNotFoundError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    _print_snapshot(snapshot)
    if snapshot.timed_out:
        console.print(f"[yellow]Stopped after {max_attempts} attempts; batch still running[/yellow]")
        raise typer.Exit(2)


@app.command()
def cancel(batch_id: str = typer.Argument(..., help="Batch correlation id")) -> None:
    """Cancel a batch; products not yet started are skipped."""
    try:
        snapshot = asyncio.run(_standalone_coordinator().cancel(batch_id))
    except BatchNotFoundError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    _print_snapshot(snapshot)


@app.command("init-db")
def init_db() -> None:
    """Create the database tables if they don't exist."""
    setup_logging()
    console.print("[blue]Initializing database schema...[/blue]")

    try:
        asyncio.run(init_models())
    except Exception as e:
        console.print(f"[red]Failed to initialize database: {e}[/red]")
        raise typer.Exit(1)

    console.print("[green]Database schema initialized successfully![/green]")


if __name__ == "__main__":
    app()
