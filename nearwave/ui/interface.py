"""
Rich text interface for nearwave.
Console output for the command line tools.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


@dataclass
class ColorScheme:
    """Color scheme for the interface."""
    sending: str = "blue"
    sent: str = "green"
    received: str = "cyan"
    warning: str = "yellow"
    error: str = "red"
    info: str = "white"

    @classmethod
    def from_dict(cls, d: Dict[str, str]) -> "ColorScheme":
        """Create ColorScheme from dictionary."""
        defaults = cls()
        return cls(**{
            name: d.get(name, getattr(defaults, name))
            for name in defaults.__dataclass_fields__
        })


class ConsoleInterface:
    """Status lines, received message panels and tables on a rich Console."""

    def __init__(
        self,
        colors: Optional[ColorScheme] = None,
        console: Optional[Console] = None,
    ):
        self.colors = colors or ColorScheme()
        self.console = console or Console()

    def print_info(self, message: str) -> None:
        self.console.print(f"[{self.colors.info}]ℹ {message}[/]")

    def print_success(self, message: str) -> None:
        self.console.print(f"[{self.colors.sent}]✓ {message}[/]")

    def print_error(self, message: str) -> None:
        self.console.print(f"[{self.colors.error}]✗ {message}[/]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[{self.colors.warning}]⚠ {message}[/]")

    def show_message(self, message: Any) -> None:
        """Show a received message; dictionaries are shown field by field."""
        if isinstance(message, dict):
            body = Table.grid(padding=(0, 2))
            body.add_column(style="bold")
            body.add_column()
            for key, value in message.items():
                body.add_row(str(key), str(value))
        else:
            body = Text(str(message))
        self.console.print(Panel(body, title="Received", border_style=self.colors.received))

    def show_settings(self, title: str, settings: Dict[str, Any]) -> None:
        """Show a flat settings dictionary as a table."""
        table = Table(title=title)
        table.add_column("Setting", style="bold")
        table.add_column("Value")
        for key, value in settings.items():
            table.add_row(key, repr(value))
        self.console.print(table)


def create_interface(config_dict: Dict[str, Any], console: Optional[Console] = None) -> ConsoleInterface:
    """
    Create a ConsoleInterface from the `ui` configuration section.

    Args:
        config_dict: UI configuration dictionary
        console: Console to print to (stdout if None)
    """
    return ConsoleInterface(
        colors=ColorScheme.from_dict(config_dict.get("colors", {})),
        console=console,
    )
