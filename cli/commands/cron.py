"""Cron Commands - Inspect and control recurring schedules"""

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import JobEngineClient, JobEngineError
from ..utils.formatting import create_cron_jobs_table, print_error, print_success

console = Console()
app = typer.Typer(name="cron", help="Cron schedule commands")


@app.command("list")
def list_cron_jobs(
    limit: int = typer.Option(50, "--limit", "-l", help="Number of schedules"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N schedules"),
):
    """📋 List cron schedules"""
    try:
        with JobEngineClient() as client:
            data = client.list_cron_jobs(limit=limit, offset=offset)
    except JobEngineError as e:
        print_error(f"Failed to list cron jobs: {e}")
        raise typer.Exit(1) from None

    cron_jobs = data.get("cron_jobs", [])
    if not cron_jobs:
        console.print(
            Panel("📭 [yellow]No cron jobs found[/yellow]", border_style="yellow")
        )
        return

    console.print(create_cron_jobs_table(cron_jobs))


@app.command("trigger")
def trigger(cron_job_id: str = typer.Argument(..., help="Cron job ID")):
    """▶ Run a schedule now"""
    try:
        with JobEngineClient() as client:
            data = client.trigger_cron_job(cron_job_id)
    except JobEngineError as e:
        print_error(f"Failed to trigger cron job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Dispatch job {data['job_id']} scheduled")


@app.command("pause")
def pause(cron_job_id: str = typer.Argument(..., help="Cron job ID")):
    """⏸ Pause a schedule"""
    try:
        with JobEngineClient() as client:
            client.pause_cron_job(cron_job_id)
    except JobEngineError as e:
        print_error(f"Failed to pause cron job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Cron job {cron_job_id} paused")


@app.command("resume")
def resume(cron_job_id: str = typer.Argument(..., help="Cron job ID")):
    """⏯ Resume a paused schedule"""
    try:
        with JobEngineClient() as client:
            data = client.resume_cron_job(cron_job_id)
    except JobEngineError as e:
        print_error(f"Failed to resume cron job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Cron job {cron_job_id} resumed, next run {data.get('next_run_at')}")
