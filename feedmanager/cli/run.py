"""feedmanager run command - Start the daemon with fetch timers and the feed updater."""

import asyncio
import logging

import typer
from rich.console import Console

from feedmanager.cli.exit_codes import ExitCode

app = typer.Typer(help="Start the feed manager daemon.")
console = Console()


@app.callback(invoke_without_command=True)
def run() -> None:
    """Start the feed manager daemon in the foreground.

    The daemon:
    - arms a fetch timer for every auto-fetchable feed source
    - runs fetch → validate → publish → deploy on each firing
    - polls the external publisher for completed feeds

    Stop it with Ctrl+C or SIGTERM.

    Example:
        feedmanager run
        feedmanager --config feedmanager.toml --verbose run
    """
    from feedmanager.config import ensure_directories, get_config
    from feedmanager.daemon.service import run_daemon

    config = get_config()
    ensure_directories(config)

    console.print("[bold green]Starting feed manager daemon...[/bold green]")

    try:
        asyncio.run(run_daemon(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        logging.exception("Daemon error")
        console.print(f"[red]Daemon error: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)
