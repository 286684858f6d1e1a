"""TenantQ CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import TenantQClient, TenantQError
from .commands import config, dispatcher, jobs
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="tenantq",
    help="🧺 TenantQ - per-tenant batch jobs and rate-limited dispatch",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(dispatcher.app, name="dispatcher")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check service health and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with TenantQClient(base_url) as client:
            health = client.health_check()
    except TenantQError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the TenantQ API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]tenantq config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    dispatcher_health = health.get("dispatcher") or {}
    healthy = health.get("ok", False)
    console.print(
        Panel(
            f"{'🚀 [green]Healthy[/green]' if healthy else '⚠️ [yellow]Degraded[/yellow]'}\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Status backend: [magenta]{health.get('status_backend', 'unknown')}[/magenta]\n"
            f"• Queue: {queue.get('queue_length', 0)} waiting, "
            f"{'processing' if queue.get('processing') else 'idle'}\n"
            f"• Dispatcher: {dispatcher_health.get('in_flight', 0)} in flight, "
            f"{dispatcher_health.get('queued', 0)} queued\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green" if healthy else "yellow",
        )
    )


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(
        Panel(
            f"🧺 [bold cyan]TenantQ CLI[/bold cyan]\n\n"
            f"• Version: [green]{__version__}[/green]\n"
            f"• Type: [yellow]Command Line Interface[/yellow]",
            title="Version Info",
            border_style="cyan",
        )
    )


if __name__ == "__main__":
    app()
