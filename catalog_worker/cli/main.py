"""catalog-worker CLI using Typer."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from catalog_worker import __version__
from catalog_worker.cli.ingest import connectors_app, jobs_app, sources_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="catalog-worker",
    help="catalog-worker - ingests public-domain ebook catalogs into a canonical catalog",
    add_completion=False,
)
app.add_typer(sources_app, name="sources")
app.add_typer(jobs_app, name="jobs")
app.add_typer(connectors_app, name="connectors")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Worker YAML config"),
    once: bool = typer.Option(False, "--once", help="Run a single polling cycle and exit"),
) -> None:
    """Start the scheduler loop that runs pending ingestion jobs."""
    from catalog_worker.config import load_settings
    from catalog_worker.db.engine import get_session, init_db
    from catalog_worker.ingestion.jobs import IngestionRunner
    from catalog_worker.ingestion.scheduler import Scheduler
    from catalog_worker.services.search_index import SearchIndexService

    settings = load_settings(config)
    init_db(settings.database_url)

    typer.echo(f"Starting catalog-worker v{__version__}")
    typer.echo(f"  Poll interval: {settings.worker.poll_interval_seconds:.0f}s")
    typer.echo(f"  Search index: {settings.search.url} ({settings.search.index_name})")
    typer.echo("Press Ctrl+C to stop")
    typer.echo("")

    with get_session(settings.database_url) as session:
        runner = IngestionRunner(
            session,
            search_index=SearchIndexService.from_config(settings.search),
            settings=settings.worker,
            http_settings=settings.http,
        )
        scheduler = Scheduler(
            runner,
            interval=settings.worker.poll_interval_seconds,
            batch_size=settings.worker.batch_size,
        )
        try:
            if once:
                attempted = asyncio.run(scheduler.tick())
                typer.echo(f"Ran {attempted} pending job(s)")
            else:
                asyncio.run(scheduler.run_forever())
        except KeyboardInterrupt:
            typer.echo("Stopped.")


@app.command()
def init_db(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Worker YAML config"),
) -> None:
    """Initialize the database (create tables)."""
    from catalog_worker.config import load_settings
    from catalog_worker.db.engine import init_db as db_init

    settings = load_settings(config)
    typer.echo("Initializing database...")
    db_init(settings.database_url)
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the catalog-worker version."""
    typer.echo(f"catalog-worker v{__version__}")


if __name__ == "__main__":
    app()
