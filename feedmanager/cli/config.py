"""feedmanager config command - Configuration management."""

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

app = typer.Typer(help="Manage feedmanager configuration.")
console = Console()


@app.command("show")
def show_config(
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
) -> None:
    """Show current configuration.

    Example:
        feedmanager config show
        feedmanager config show --format yaml
    """
    from feedmanager.config import (
        config_to_dict,
        export_config_json,
        export_config_yaml,
        get_config,
    )

    config = get_config()

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config), "yaml", theme="monokai"))
        return
    elif format == "json":
        console.print(Syntax(export_config_json(config), "json", theme="monokai"))
        return

    console.print("[bold]Feed Manager Configuration[/bold]")
    console.print()

    for section, values in config_to_dict(config).items():
        if not isinstance(values, dict):
            console.print(f"[cyan]{section}[/cyan] = {values}")
            continue
        table = Table(title=section, show_header=False, title_justify="left")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, "" if value is None else str(value))
        console.print(table)


@app.command("validate")
def validate_config() -> None:
    """Validate current configuration.

    Example:
        feedmanager config validate
    """
    from feedmanager.config import get_config, validate_config as do_validate

    config = get_config()

    console.print("[bold]Validating configuration...[/bold]")
    console.print()

    all_passed = True
    errors = do_validate(config)

    for error in errors:
        if error.severity == "error":
            status = "[red]✗[/red]"
            all_passed = False
        else:
            status = "[yellow]![/yellow]"
        console.print(f"  {status} [{error.severity.upper()}] {error.field}: {error.message}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=1)
