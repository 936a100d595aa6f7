"""Jobs Commands - Enqueue, inspect and cancel background jobs"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import JobEngineClient, JobEngineError
from ..utils.formatting import (
    create_job_status_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job commands")


@app.command("enqueue")
def enqueue(
    job_type: str = typer.Argument(..., help="Registered job type"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    priority: str = typer.Option(
        "normal", "--priority", help="low, normal, high or urgent"
    ),
    delay: float = typer.Option(0, "--delay", "-d", help="Seconds before eligible"),
    max_retries: int | None = typer.Option(None, "--max-retries", help="Retry limit"),
):
    """➕ Schedule a job"""
    try:
        body = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON payload: {e}")
        raise typer.Exit(1) from None

    try:
        with JobEngineClient() as client:
            job = client.enqueue_job(job_type, body, priority, delay, max_retries)
    except JobEngineError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job['id']} scheduled for {job['scheduled_at']}")


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs, newest first"""
    try:
        with JobEngineClient() as client:
            data = client.list_jobs(status=status, type=type, limit=limit, offset=offset)
    except JobEngineError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    if not jobs:
        console.print(
            Panel("📭 [yellow]No jobs found[/yellow]", border_style="yellow")
        )
        return

    console.print(create_jobs_table(jobs))
    console.print(
        f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{data.get('total', 0)}[/yellow] jobs"
    )


@app.command("status")
def status(job_id: str = typer.Argument(..., help="Job ID")):
    """🔍 Show a job's status and progress"""
    try:
        with JobEngineClient() as client:
            job = client.get_job_status(job_id)
    except JobEngineError as e:
        print_error(f"Failed to fetch job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_status_panel(job))


@app.command("cancel")
def cancel(job_id: str = typer.Argument(..., help="Job ID")):
    """🛑 Cancel a pending job"""
    try:
        with JobEngineClient() as client:
            client.cancel_job(job_id)
    except JobEngineError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} cancelled")


@app.command("stats")
def stats(
    time_range: str = typer.Option(
        "24h", "--range", "-r", help="Window: 1h, 24h, 7d or 30d"
    ),
):
    """📊 Show job statistics"""
    try:
        with JobEngineClient() as client:
            data = client.job_stats(time_range)
    except JobEngineError as e:
        print_error(f"Failed to fetch statistics: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(data))
