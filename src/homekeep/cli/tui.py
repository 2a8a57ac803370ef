"""Terminal rendering for queue state."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from homekeep.core.operation import OperationRecord
    from homekeep.sync.context import SyncStatus

console = Console()


# =============================================================================
# Color Schemes
# =============================================================================

STATUS_COLORS = {
    "pending": "yellow",
    "in-flight": "cyan",
    "failed": "red",
}

ACTION_COLORS = {
    "create": "green",
    "update": "blue",
    "delete": "magenta",
}

NETWORK_COLORS = {
    "online": "green",
    "offline": "bright_black",
}


def render_status(status: SyncStatus, remote_url: str) -> None:
    """Render the offline indicator and queue counters."""
    header = Text()
    header.append("[*] ", style="bold")
    header.append(status.label, style="bold cyan" if status.syncing else "bold")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="bright_black")
    table.add_column("Value", style="bold")

    network_color = NETWORK_COLORS.get(status.network.value, "white")
    table.add_row("Network", f"[{network_color}]{status.network.value}[/{network_color}]")
    table.add_row("Engine", status.engine.value)
    table.add_row("Pending", f"[yellow]{status.pending:,}[/yellow]")
    if status.failed:
        table.add_row("Failed", f"[red]{status.failed:,}[/red] [dim](hk failed)[/dim]")
    table.add_row("Remote", f"[dim]{remote_url}[/dim]")

    console.print(Panel(table, title=header, border_style="cyan"))


def render_records(records: Sequence[OperationRecord], title: str) -> None:
    """Render operation records as a table in replay order."""
    if not records:
        console.print(f"[dim]No {title.lower()}.[/dim]")
        return

    table = Table(title=title)
    table.add_column("#", justify="right", style="bright_black")
    table.add_column("ID", style="bold")
    table.add_column("Entity")
    table.add_column("Action")
    table.add_column("Target", overflow="fold")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Enqueued", style="bright_black")
    table.add_column("Last error", style="red", overflow="fold")

    for record in records:
        action_color = ACTION_COLORS.get(record.action.value, "white")
        status_color = STATUS_COLORS.get(record.status.value, "white")
        table.add_row(
            str(record.sequence),
            record.id,
            record.entity_type,
            f"[{action_color}]{record.action.value}[/{action_color}]",
            record.entity_id,
            f"[{status_color}]{record.status.value}[/{status_color}]",
            str(record.attempt_count),
            record.enqueued_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.last_error or "",
        )

    console.print(table)
