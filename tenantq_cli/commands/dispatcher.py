"""Dispatcher Commands - Lane and call statistics"""

import typer
from rich.console import Console

from ..client.endpoints import ServiceNotRunningError, TenantQClient, TenantQError
from ..utils.formatting import (
    create_dispatcher_panel,
    create_lanes_table,
    print_error,
    print_info,
)

console = Console()
app = typer.Typer(name="dispatcher", help="Rate-limited dispatcher commands")


@app.command("stats")
def dispatcher_stats():
    """⚡ Show dispatcher counters and lanes"""
    try:
        with TenantQClient() as client:
            stats = client.get_dispatcher_stats()
    except TenantQError as e:
        print_error(f"Failed to get dispatcher stats: {e.message}")
        if isinstance(e, ServiceNotRunningError):
            print_info("The dispatcher is not running; check the server logs")
        raise typer.Exit(1) from None

    console.print(create_dispatcher_panel(stats))
    console.print(create_lanes_table(stats.get("lanes", {})))
