"""
Rich-powered console output for the stproxy command.

Startup summary (routes table and discovery panel) and fatal error messages.
Operational messages go through logging, not through this module.
"""

import sys
from typing import Mapping

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console(force_terminal=None, stderr=True)

_USE_ASCII = not sys.stderr.isatty()


def print_error(message: str):
    """Print an error message"""
    icon = "x" if _USE_ASCII else "✗"
    console.print(f"[red]{icon}[/red] {message}", style="red", highlight=False)


def routes_table(hosts: Mapping[str, str], port: str) -> Table:
    """
    Create a Rich table showing the prefix routing.

    Args:
        hosts: Mapping of path prefix -> target URL
        port: Listen port of the proxy
    """
    table = Table(title="Routes", show_header=True, header_style="bold cyan")

    table.add_column("Prefix", style="bold")
    table.add_column("Path", style="cyan")
    table.add_column("Target", style="dim")

    for prefix, target in sorted(hosts.items()):
        table.add_row(prefix, f":{port}/{prefix}/...", target)

    return table


def discovery_panel(st: str, usn: str, location: str | None, max_age: int, alive_interval: float) -> Panel:
    """Create a panel describing the SSDP advertisement."""
    if alive_interval > 0:
        alive = f"every {alive_interval}s"
    else:
        alive = "initial announcement only"
    if location is None:
        location = "http://<lan-ip>:<ephemeral port>/"
    lines = [
        Text(f"ST:       {st}"),
        Text(f"USN:      {usn}"),
        Text(f"Location: {location}"),
        Text(f"Max-Age:  {max_age}s"),
        Text(f"Alive:    {alive}"),
    ]
    return Panel(Text("\n").join(lines), title="SSDP Discovery", border_style="cyan")


def print_startup(hosts: Mapping[str, str], port: str, st: str, usn: str, location: str | None, max_age: int, alive_interval: float):
    """Print the routes table and discovery panel"""
    console.print(routes_table(hosts, port))
    console.print(discovery_panel(st, usn, location, max_age, alive_interval))
