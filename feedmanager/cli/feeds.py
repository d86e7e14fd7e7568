"""feedmanager feeds command - Inspect and process feed sources."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from feedmanager.cli.error_handler import handle_errors
from feedmanager.cli.exit_codes import ExitCode

app = typer.Typer(help="Inspect and process feed sources.")
console = Console()


def _state_style(state: str) -> str:
    colors = {"succeeded": "green", "failed": "red", "cancelled": "yellow"}
    color = colors.get(state)
    return f"[{color}]{state}[/{color}]" if color else state


@app.command("list")
@handle_errors
def list_feeds(
    project_id: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Only list feed sources of this project.",
    ),
) -> None:
    """List feed sources with their fetch schedule and latest version.

    Example:
        feedmanager feeds list
        feedmanager feeds list --project 4f0c...
    """
    from feedmanager.config import get_config
    from feedmanager.daemon.service import build_job_context
    from feedmanager.database.repositories import FeedSourceRepository, FeedVersionRepository

    context = build_job_context(get_config())

    with context.session_factory() as session:
        repo = FeedSourceRepository(session)
        feed_sources = repo.get_by_project(project_id) if project_id else repo.get_all()
        versions = FeedVersionRepository(session)
        latest = {fs.id: versions.get_latest(fs.id) for fs in feed_sources}

    table = Table(title="Feed Sources")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Retrieval")
    table.add_column("Interval", style="green")
    table.add_column("Timer", style="bold")
    table.add_column("Latest Version")
    table.add_column("Publish State")

    for fs in feed_sources:
        version = latest[fs.id]
        if version is None:
            version_str, publish_str = "None", ""
        else:
            version_str = f"v{version.version}"
            if version.processed_by_external_publisher:
                publish_str = "[green]processed[/green]"
            elif version.sent_to_external_publisher:
                publish_str = "[yellow]sent[/yellow]"
            else:
                publish_str = "[dim]not sent[/dim]"

        table.add_row(
            fs.id[:8],
            fs.name,
            fs.to_dict()["retrieval_method"],
            f"{fs.fetch_interval} {fs.to_dict()['fetch_interval_unit']}",
            "[green]armed[/green]" if fs.is_auto_fetchable else "[dim]none[/dim]",
            version_str,
            publish_str,
        )

    console.print(table)


@app.command("fetch")
@handle_errors
def fetch_feed(
    feed_source_id: str = typer.Argument(..., help="ID of the feed source to process."),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help="Process a local feed file instead of downloading.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    user: Optional[str] = typer.Option(
        None,
        "--user",
        "-u",
        help="Identity recorded as the job owner.",
    ),
) -> None:
    """Run the fetch → validate → publish → deploy chain once.

    Example:
        feedmanager feeds fetch 4f0c...
        feedmanager feeds fetch 4f0c... --file gtfs.zip
    """
    from feedmanager.config import get_config
    from feedmanager.daemon.service import build_job_context
    from feedmanager.scheduler.feed_scheduler import FeedScheduler

    context = build_job_context(get_config())
    scheduler = FeedScheduler(context)

    console.print(f"[bold]Processing feed source:[/bold] {feed_source_id}")
    root = asyncio.run(scheduler.run_now(feed_source_id, owner=user, source_file=file))

    table = Table(title=f"Job {root.job_id[:8]}")
    table.add_column("Job", style="cyan")
    table.add_column("State", style="bold")
    table.add_column("Message")

    for job in root.subjobs:
        state = job.status.state.name.lower()
        table.add_row(job.name, _state_style(state), job.status.message)
    console.print(table)

    if root.status.error:
        console.print(f"[red]✗[/red] {root.status.message}")
        raise typer.Exit(code=ExitCode.JOB_FAILED)
    console.print(f"[green]✓[/green] {root.status.message}")


@app.command("check-updates")
@handle_errors
def check_updates() -> None:
    """Check the external publisher for completed feeds once.

    The etag memory starts empty, so every current marker counts as new.

    Example:
        feedmanager feeds check-updates
    """
    from feedmanager.config import get_config
    from feedmanager.daemon.service import build_job_context
    from feedmanager.errors import ConfigurationError
    from feedmanager.scheduler.feed_updater import FeedUpdater
    from feedmanager.services.storage import S3CompletedFeedRetriever

    config = get_config()
    publisher = config.publisher
    if not publisher.enabled or not publisher.bucket:
        raise ConfigurationError("External publishing is not enabled.")

    context = build_job_context(config)
    updater = FeedUpdater(
        S3CompletedFeedRetriever(
            bucket=publisher.bucket,
            prefix=publisher.completed_prefix,
            endpoint_url=publisher.endpoint_url,
            region=publisher.region,
        ),
        context.session_factory,
        resource_type=publisher.resource_type,
        property_name=publisher.agency_property,
    )

    updated = asyncio.run(updater.check_for_updated_feeds())
    if not updated:
        console.print("[dim]No completed feeds detected.[/dim]")
        return

    table = Table(title="Completed Feeds")
    table.add_column("Agency", style="cyan")
    table.add_column("ETag", style="green")
    for agency_id, etag in sorted(updated.items()):
        table.add_row(agency_id, etag)
    console.print(table)
