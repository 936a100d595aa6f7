"""Job Engine CLI - Main Entry Point"""

import asyncio
import os

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import JobEngineClient, JobEngineError, api_url
from .commands import cron, jobs
from .utils.formatting import print_error, print_info

console = Console()

# Create main Typer app
app = typer.Typer(
    name="jobengine",
    help="⚙️ Job Engine - durable background jobs and cron schedules",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(cron.app, name="cron")


@app.command()
def worker(
    no_cron: bool = typer.Option(
        False, "--no-cron", help="Do not run the cron monitor in this process"
    ),
):
    """🏭 Run the dispatcher (and cron monitor) until interrupted"""
    from jobengine.config.logging import setup_logging
    from jobengine.config.settings import settings
    from jobengine.engine import JobEngine

    setup_logging(settings)

    async def run() -> None:
        engine = JobEngine(settings)
        await engine.start(run_cron_monitor=not no_cron)
        try:
            await asyncio.Event().wait()
        finally:
            await engine.stop()

    console.print(
        Panel(
            f"• Concurrency: [cyan]{settings.job_concurrency}[/cyan]\n"
            f"• Poll interval: [cyan]{settings.job_poll_interval_ms}ms[/cyan]\n"
            f"• Queue backend: [yellow]{settings.queue_backend_url or 'database'}[/yellow]\n"
            f"• Cron monitor: [green]{'off' if no_cron else 'on'}[/green]",
            title="Starting worker",
            border_style="cyan",
        )
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print_info("Worker stopped")


@app.command()
def status():
    """📊 Check API status and connectivity"""
    base_url = api_url()
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobEngineClient(base_url) as client:
            health = client.health_check()
    except JobEngineError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the Job Engine API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"Point the CLI elsewhere with:\n"
                f"[cyan]jobengine --api-url <url> status[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    dispatcher = health.get("dispatcher") or {}
    console.print(
        Panel(
            f"🚀 [green]Connected Successfully![/green]\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Queue depth: [cyan]{dispatcher.get('queue_depth', 0)}[/cyan]\n"
            f"• Processing: [cyan]{dispatcher.get('processing', 0)}[/cyan]\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green",
        )
    )


@app.command()
def version():
    """📎 Show version information"""
    from jobengine import __version__

    console.print(
        Panel(
            f"⚙️ [bold cyan]Job Engine CLI[/bold cyan]\n\n"
            f"• Version: [green]{__version__}[/green]",
            title="Version Info",
            border_style="cyan",
        )
    )


@app.callback()
def main(
    api: str | None = typer.Option(
        None, "--api-url", envvar="JOBENGINE_API_URL", help="Job Engine API base URL"
    ),
):
    """
    ⚙️ Job Engine CLI

    Run workers, enqueue and inspect jobs, and manage cron schedules.
    """
    if api:
        os.environ["JOBENGINE_API_URL"] = api


if __name__ == "__main__":
    app()
