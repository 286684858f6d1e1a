"""Job Commands - Status, cancellation and queue statistics"""

import typer
from rich.console import Console

from ..client.endpoints import (
    ServiceNotRunningError,
    TenantQClient,
    TenantQError,
    TenantRequiredError,
    UnknownJobTypeError,
)
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_status_panel,
    create_queue_stats_table,
    create_reasons_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Batch job commands")


def _report(action: str, error: TenantQError) -> None:
    """Print an API error with a hint for the cases the CLI can explain"""
    print_error(f"Failed to {action}: {error.message}")
    if isinstance(error, UnknownJobTypeError) and error.known_types:
        print_info(f"Known job types: {', '.join(error.known_types)}")
    elif isinstance(error, ServiceNotRunningError):
        print_info("The job queue is not running; check the server logs")
    elif isinstance(error, TenantRequiredError):
        print_info("Pass --tenant or run: tenantq config tenant <shop>")


@app.command("status")
def job_status(
    job_type: str = typer.Argument(..., help="Job type (e.g. seo, aiEnhance)"),
    tenant: str | None = typer.Option(None, "--tenant", "-t", help="Tenant (shop) ID"),
    reasons: bool = typer.Option(
        True, "--reasons/--no-reasons", help="Show skip and failure reasons"
    ),
):
    """📊 Show the status of a job type for a tenant"""
    try:
        with TenantQClient(tenant_id=tenant) as client:
            status = client.get_job_status(job_type)
    except TenantQError as e:
        _report("get job status", e)
        raise typer.Exit(1) from None

    console.print(create_job_status_panel(job_type, status))

    limit = config.reasons_limit() if reasons else 0
    if not limit:
        return
    for title, key in (("Failures", "fail_reasons"), ("Skipped", "skip_reasons")):
        if status.get(key):
            console.print(create_reasons_table(title, status[key], limit))


@app.command("cancel")
def cancel_job(
    job_type: str = typer.Argument(..., help="Job type to cancel"),
    tenant: str | None = typer.Option(None, "--tenant", "-t", help="Tenant (shop) ID"),
):
    """🛑 Cancel a tenant's job (stops at the next batch)"""
    try:
        with TenantQClient(tenant_id=tenant) as client:
            result = client.cancel_job(job_type)
    except TenantQError as e:
        _report("cancel job", e)
        raise typer.Exit(1) from None

    if result.get("cancel_requested"):
        print_success(f"Cancellation requested for {job_type}")
    else:
        print_warning(f"Cancellation for {job_type} could not be recorded")

    status = result.get("status") or {}
    print_info(f"Current status: {status.get('status', 'unknown')}")


@app.command("stats")
def queue_stats():
    """📋 Show the job queue"""
    try:
        with TenantQClient() as client:
            stats = client.get_queue_stats()
    except TenantQError as e:
        _report("get queue stats", e)
        raise typer.Exit(1) from None

    if not stats.get("current_job") and not stats.get("queued_jobs"):
        print_info("Job queue is empty")
        return

    console.print(create_queue_stats_table(stats))
