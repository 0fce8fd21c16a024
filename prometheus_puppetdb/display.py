"""Rich terminal output for diagnostics and configuration."""

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

# Diagnostics go to stderr, stdout is reserved for rendered targets
console = Console(stderr=True)
stdout_console = Console()


def display_config(config: dict[str, Any]) -> None:
    """Display configuration.

    Args:
        config: Configuration dictionary
    """
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    # Flatten and display config
    def add_items(d: dict, prefix: str = ""):
        for key, value in d.items():
            full_key = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict) and key != "object_labels":
                add_items(value, full_key)
            else:
                table.add_row(full_key, str(value))

    add_items(config)

    panel = Panel(table, title="Configuration", border_style="blue")
    stdout_console.print(panel)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✅ {escape(message)}[/green]")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]❌ {escape(message)}[/red]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠️  {escape(message)}[/yellow]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ️  {escape(message)}[/blue]")
