"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "idle": "dim",
    "queued": "yellow",
    "processing": "cyan",
    "completed": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def format_seconds(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s" if minutes else f"{secs}s"


def create_job_status_panel(job_type: str, status: dict[str, Any]) -> Panel:
    """Create formatted panel for one job status snapshot"""
    state = status.get("status", "idle")
    style = STATUS_STYLES.get(state, "white")

    lines = [
        f"• Status: [{style}]{state}[/{style}]",
        f"• Message: {status.get('message') or '-'}",
    ]
    if status.get("job_id"):
        lines.append(f"• Job ID: [cyan]{status['job_id']}[/cyan]")
    if status.get("position") is not None:
        lines.append(f"• Queue position: [yellow]{status['position']}[/yellow]")

    if status.get("total_items"):
        lines.append(
            f"• Items: [blue]{status.get('processed_items', 0)}/{status['total_items']}[/blue] "
            f"([green]{status.get('successful_items', 0)} ok[/green], "
            f"[yellow]{status.get('skipped_items', 0)} skipped[/yellow], "
            f"[red]{status.get('failed_items', 0)} failed[/red])"
        )

    progress = status.get("progress")
    if progress and status.get("in_progress"):
        lines.append(
            f"• Progress: [cyan]{progress.get('percent', 0)}%[/cyan], "
            f"elapsed {format_seconds(progress.get('elapsed_seconds'))}, "
            f"about {format_seconds(progress.get('remaining_seconds'))} left"
        )

    if status.get("last_error") and state == "failed":
        lines.append(f"• Error: [red]{status['last_error']}[/red]")

    return Panel("\n".join(lines), title=f"Job: {job_type}", border_style=style)


def create_reasons_table(title: str, reasons: list[str], limit: int = 10) -> Table:
    """Create a table of skip or failure reasons"""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Reason", justify="left", style="white")

    for index, reason in enumerate(reasons[-limit:], start=1):
        table.add_row(str(index), reason)

    return table


def create_queue_stats_table(stats: dict[str, Any]) -> Table:
    """Create formatted table for the job queue"""
    table = Table(
        title=f"Job Queue ({stats.get('queue_length', 0)} waiting)", box=box.ROUNDED
    )

    table.add_column("State", justify="center", style="bold")
    table.add_column("Tenant", justify="left", style="cyan")
    table.add_column("Job Type", justify="left", style="magenta")
    table.add_column("Items", justify="right", style="blue")
    table.add_column("Attempts", justify="right", style="yellow")
    table.add_column("Queued At", justify="left", style="dim")

    current = stats.get("current_job")
    if current:
        table.add_row(
            "▶ Running",
            current.get("tenant_id", ""),
            current.get("job_type", ""),
            f"{current.get('processed_items', 0)}/{current.get('total_items', 0)}",
            str(current.get("attempts", 0)),
            current.get("queued_at", ""),
        )

    for position, job in enumerate(stats.get("queued_jobs", []), start=1):
        table.add_row(
            f"#{position}",
            job.get("tenant_id", ""),
            job.get("job_type", ""),
            str(job.get("total_items", 0)),
            str(job.get("attempts", 0)),
            job.get("queued_at", ""),
        )

    return table


def create_dispatcher_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for dispatcher counters"""
    success_rate = stats.get("success_rate")
    avg_units = stats.get("avg_units_per_call")
    content = (
        f"• Running: {'[green]yes[/green]' if stats.get('running') else '[red]no[/red]'}\n"
        f"• Calls: [blue]{stats.get('total', 0)}[/blue] "
        f"([green]{stats.get('successful', 0)} ok[/green], "
        f"[red]{stats.get('failed', 0)} failed[/red], "
        f"[yellow]{stats.get('timed_out', 0)} timed out[/yellow], "
        f"[dim]{stats.get('discarded', 0)} discarded[/dim])\n"
        f"• Success rate: {f'{success_rate}%' if success_rate is not None else '-'}\n"
        f"• Units: [cyan]{stats.get('total_units', 0)}[/cyan] "
        f"(avg {avg_units if avg_units is not None else '-'} per call)\n"
        f"• Uptime: {format_seconds(stats.get('uptime_seconds'))}"
    )
    return Panel(content, title="Dispatcher", border_style="cyan")


def create_lanes_table(lanes: dict[str, dict[str, Any]]) -> Table:
    """Create formatted table for dispatcher lanes"""
    table = Table(title="Lanes", box=box.ROUNDED)

    table.add_column("Lane", justify="left", style="cyan")
    table.add_column("Concurrency", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Timeout", justify="right")
    table.add_column("Queued", justify="right", style="yellow")
    table.add_column("In Flight", justify="right", style="green")

    for name, lane in lanes.items():
        table.add_row(
            name,
            str(lane.get("concurrency", "")),
            f"{lane.get('rate', '')}/{lane.get('interval_seconds', 1)}s",
            f"{lane.get('timeout_seconds', '')}s",
            str(lane.get("queued", 0)),
            str(lane.get("in_flight", 0)),
        )

    return table
