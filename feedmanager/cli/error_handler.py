"""Global exception handling for the feedmanager CLI.

``handle_errors`` turns exceptions raised by a command into a readable
message on stderr and the matching exit code.
"""

import logging
from functools import wraps
from typing import Any, Callable, TypeVar

import typer
from rich.console import Console

from feedmanager.cli.exit_codes import ExitCode
from feedmanager.errors import FeedManagerError

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - FeedManagerError subclasses: error message with the error's exit code
    - KeyboardInterrupt: cancellation message with exit code 130
    - Other exceptions: generic error, full traceback in the log

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise ConfigurationError("Publishing is not enabled")
    """

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except FeedManagerError as e:
            logger.error(
                f"{type(e).__name__}: {e.message}",
                extra={"exit_code": e.exit_code, "details": e.details},
            )
            console.print(f"[red]Error:[/red] {e.message}")
            for key, value in e.details.items():
                console.print(f"  [dim]{key}:[/dim] {value}")
            raise typer.Exit(code=e.exit_code)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --verbose for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
