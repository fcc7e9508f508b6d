"""
Ingestion CLI Commands
======================

CLI commands for managing sources, ingestion jobs and connectors.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Optional
from uuid import UUID

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from catalog_worker.config import Settings, load_settings, load_source_seeds
from catalog_worker.core.enums import ConnectorType, JobStatus
from catalog_worker.core.schema import Source
from catalog_worker.db.engine import get_session, init_db
from catalog_worker.db.repositories import (
    IngestionJobEventRepository,
    IngestionJobRepository,
    SourceRepository,
)
from catalog_worker.ingestion.connectors import (
    create_connector,
    get_connector_info,
    list_connectors,
)
from catalog_worker.ingestion.jobs import IngestionRunner, JobNotFoundError
from catalog_worker.services.search_index import SearchIndexService

console = Console()
sources_app = typer.Typer(help="Source management commands")
jobs_app = typer.Typer(help="Job management commands")
connectors_app = typer.Typer(help="Connector commands")

STATUS_COLORS = {
    JobStatus.COMPLETED.value: "green",
    JobStatus.RUNNING.value: "blue",
    JobStatus.PENDING.value: "yellow",
    JobStatus.FAILED.value: "red",
    JobStatus.CANCELLED.value: "magenta",
}


@contextmanager
def _session():
    """Open a session on the configured database, creating tables if needed."""
    settings = load_settings()
    init_db(settings.database_url)
    with get_session(settings.database_url) as session:
        yield session, settings


def _find_source(repo: SourceRepository, ref: str) -> Source | None:
    """Look a source up by name, then by id."""
    source = repo.get_by_name(ref)
    if source is not None:
        return source
    try:
        return repo.get_by_id(UUID(ref))
    except ValueError:
        return None


def _colored(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


# Sources subcommands


@sources_app.command("list")
def list_sources() -> None:
    """
    List sources in the database.

    Examples:
        catalog-worker sources list
    """
    with _session() as (session, _):
        sources = SourceRepository(session).list_all()

    if not sources:
        rprint("[yellow]No sources configured[/yellow]")
        rprint("\nSeed the defaults with: catalog-worker sources seed")
        return

    table = Table(title="Catalog Sources")
    table.add_column("Name", style="bold")
    table.add_column("Connector")
    table.add_column("Base URL")
    table.add_column("Status")
    table.add_column("ID", style="dim")

    for source in sources:
        status = "[green]enabled[/green]" if source.enabled else "[yellow]disabled[/yellow]"
        connector = source.connector_type.value if source.connector_type else "[red]none[/red]"
        table.add_row(source.name, connector, source.base_url, status, str(source.id))

    console.print(table)


@sources_app.command("seed")
def seed_sources(
    path: Optional[str] = typer.Option(None, "--file", "-f", help="Sources YAML file"),
) -> None:
    """
    Insert default sources that are not in the database yet.

    Examples:
        catalog-worker sources seed
        catalog-worker sources seed --file my_sources.yaml
    """
    try:
        seeds = load_source_seeds(path)
    except FileNotFoundError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    added = 0
    with _session() as (session, _):
        repo = SourceRepository(session)
        for seed in seeds:
            if repo.get_by_name(seed.name) is not None:
                continue
            repo.create(
                Source(
                    name=seed.name,
                    base_url=seed.base_url,
                    connector_type=ConnectorType(seed.connector_type),
                    enabled=seed.enabled,
                    trust_score=seed.trust_score,
                    license_type=seed.license_type,
                )
            )
            added += 1
            rprint(f"  [green]+[/green] {seed.name}")
        session.commit()

    rprint(f"\n[bold]{added}[/bold] source(s) added, {len(seeds) - added} already present")


# Jobs subcommands


@jobs_app.command("create")
def create_job(
    source: str = typer.Argument(..., help="Source name or ID"),
) -> None:
    """
    Create a pending ingestion job for a source.

    Examples:
        catalog-worker jobs create "Project Gutenberg"
    """
    with _session() as (session, settings):
        found = _find_source(SourceRepository(session), source)
        if found is None:
            rprint(f"[red]Error:[/red] Source '{source}' not found")
            raise typer.Exit(1)

        runner = IngestionRunner(session, settings=settings.worker)
        job = runner.create_job_for_source(found.id)

    if job is None:
        rprint(f"[yellow]Source '{found.name}' already has a pending or running job[/yellow]")
        raise typer.Exit(1)

    rprint("[green]Job created[/green]")
    rprint(f"Job ID: [bold]{job.id}[/bold]")
    rprint("\nRun it now with:")
    rprint(f"  catalog-worker jobs run {job.id}")


@jobs_app.command("run")
def run_job(
    job_id: str = typer.Argument(..., help="Job ID to run"),
    no_index: bool = typer.Option(False, "--no-index", help="Skip pushing works to search"),
) -> None:
    """
    Run a pending job in the foreground.

    Examples:
        catalog-worker jobs run 3f2a...
    """
    with _session() as (session, settings):
        runner = _build_runner(session, settings, with_index=not no_index)
        try:
            with console.status("[bold blue]Ingesting...[/bold blue]"):
                asyncio.run(runner.run_job(job_id))
        except JobNotFoundError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        except Exception as e:
            rprint(f"[red]Job failed:[/red] {e}")
            _print_events(session, job_id, limit=10)
            raise typer.Exit(1)

        job = IngestionJobRepository(session).get_by_id(job_id)
        rprint(f"\n[bold]Job {job_id}[/bold]: {_colored(job.status.value)}")
        _print_events(session, job_id, limit=10)


@jobs_app.command("list")
def list_jobs(
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Filter by source name or ID"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum jobs to show"),
) -> None:
    """
    List recent ingestion jobs.

    Examples:
        catalog-worker jobs list
        catalog-worker jobs list --source "Standard Ebooks"
    """
    with _session() as (session, _):
        source_repo = SourceRepository(session)
        source_id = None
        if source:
            found = _find_source(source_repo, source)
            if found is None:
                rprint(f"[red]Error:[/red] Source '{source}' not found")
                raise typer.Exit(1)
            source_id = found.id
        jobs = IngestionJobRepository(session).list_recent(source_id=source_id, limit=limit)
        names = {str(s.id): s.name for s in source_repo.list_all()}

    if not jobs:
        rprint("[yellow]No jobs found[/yellow]")
        return

    table = Table(title="Ingestion Jobs")
    table.add_column("ID", style="dim")
    table.add_column("Source", style="bold")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Completed")
    table.add_column("Error")

    for job in jobs:
        table.add_row(
            str(job.id),
            names.get(str(job.source_id), str(job.source_id)),
            _colored(job.status.value),
            job.started_at.strftime("%Y-%m-%d %H:%M:%S") if job.started_at else "-",
            job.completed_at.strftime("%Y-%m-%d %H:%M:%S") if job.completed_at else "-",
            (job.error_message or "")[:60],
        )

    console.print(table)


@jobs_app.command("events")
def job_events(
    job_id: str = typer.Argument(..., help="Job ID"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Show only the last N events"),
) -> None:
    """
    Show a job's event timeline.

    Examples:
        catalog-worker jobs events 3f2a...
    """
    with _session() as (session, _):
        if IngestionJobRepository(session).get_by_id(job_id) is None:
            rprint(f"[red]Error:[/red] Job '{job_id}' not found")
            raise typer.Exit(1)
        _print_events(session, job_id, limit=limit)


@jobs_app.command("cancel")
def cancel_job(
    job_id: str = typer.Argument(..., help="Job ID to cancel"),
) -> None:
    """
    Cancel a pending or running job.

    A running job stops at its next cancellation check.

    Examples:
        catalog-worker jobs cancel 3f2a...
    """
    with _session() as (session, _):
        if IngestionJobRepository(session).cancel(job_id):
            rprint(f"[magenta]Job {job_id} cancelled[/magenta]")
            return
        job = IngestionJobRepository(session).get_by_id(job_id)

    if job is None:
        rprint(f"[red]Error:[/red] Job '{job_id}' not found")
    else:
        rprint(f"[yellow]Job {job_id} is already {job.status.value}[/yellow]")
    raise typer.Exit(1)


def _build_runner(session, settings: Settings, with_index: bool = True) -> IngestionRunner:
    search_index = SearchIndexService.from_config(settings.search) if with_index else None
    return IngestionRunner(
        session,
        search_index=search_index,
        settings=settings.worker,
        http_settings=settings.http,
    )


def _print_events(session, job_id: str, limit: int | None = None) -> None:
    """Display a job's events in a table, newest last."""
    events = IngestionJobEventRepository(session).list_for_job(job_id)
    if limit is not None:
        events = events[-limit:]
    if not events:
        rprint("[dim]No events recorded[/dim]")
        return

    table = Table(title=f"Events for job {job_id}")
    table.add_column("Time")
    table.add_column("Type", style="bold")
    table.add_column("Message")
    for event in events:
        table.add_row(
            event.created_at.strftime("%H:%M:%S"),
            event.event_type.value,
            event.message,
        )
    console.print(table)


# Connectors subcommands


@connectors_app.command("list")
def list_registered_connectors() -> None:
    """
    List available connectors.

    Examples:
        catalog-worker connectors list
    """
    table = Table(title="Available Connectors")
    table.add_column("Type", style="bold")
    table.add_column("Version")
    table.add_column("Class")
    table.add_column("Base URL")

    for connector_type in list_connectors():
        info = get_connector_info(connector_type)
        if info:
            table.add_row(connector_type, info["version"], info["class"], info["base_url"])

    console.print(table)


@connectors_app.command("health")
def check_connectors(
    connector_type: Optional[str] = typer.Argument(None, help="Connector type to check"),
) -> None:
    """
    Check whether connector sources are reachable.

    Examples:
        catalog-worker connectors health
        catalog-worker connectors health gutenberg
    """
    types = [connector_type] if connector_type else list_connectors()
    for tag in types:
        if get_connector_info(tag) is None:
            rprint(f"[red]Error:[/red] Unknown connector '{tag}'")
            rprint(f"\nAvailable connectors: {', '.join(list_connectors())}")
            raise typer.Exit(1)

    async def _check_all() -> list[bool]:
        connectors = [create_connector(tag, source_id="health-check") for tag in types]
        try:
            return await asyncio.gather(*(c.health_check() for c in connectors))
        finally:
            for connector in connectors:
                await connector.aclose()

    with console.status("[bold blue]Checking sources...[/bold blue]"):
        results = asyncio.run(_check_all())

    for tag, healthy in zip(types, results):
        mark = "[green]ok[/green]" if healthy else "[red]unreachable[/red]"
        rprint(f"  {tag}: {mark}")

    if not all(results):
        raise typer.Exit(1)
