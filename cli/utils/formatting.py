"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "running": "blue",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
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


def _status(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Priority", justify="center", style="yellow")
    table.add_column("Retries", justify="center")
    table.add_column("Scheduled", justify="left", style="white")

    for job in jobs:
        table.add_row(
            str(job.get("id", ""))[:8],
            job.get("type", ""),
            _status(job.get("status", "")),
            job.get("priority", ""),
            f"{job.get('retry_count', 0)}/{job.get('max_retries', 0)}",
            str(job.get("scheduled_at", "—")),
        )

    return table


def create_job_status_panel(job: dict[str, Any]) -> Panel:
    """Create formatted panel for a job status projection"""
    content = (
        f"• Type: [magenta]{job.get('type', '')}[/magenta]\n"
        f"• Status: {_status(job.get('status', ''))}\n"
        f"• Progress: [cyan]{job.get('progress', 0)}%[/cyan]"
    )
    if job.get("progress_message"):
        content += f" [dim]{job['progress_message']}[/dim]"
    if job.get("last_error"):
        content += f"\n• Last error: [red]{job['last_error']}[/red]"
    if job.get("result"):
        content += f"\n• Result: {job['result']}"

    return Panel(content, title=f"Job {job.get('id', '')}", border_style="blue")


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for job statistics"""
    content = f"""
📊 [bold blue]Jobs ({stats.get("time_range", "24h")})[/bold blue]

• Total: [blue]{stats.get("total", 0)}[/blue]
• Completed: [green]{stats.get("completed", 0)}[/green]
• Failed: [red]{stats.get("failed", 0)}[/red]
• Cancelled: [dim]{stats.get("cancelled", 0)}[/dim]
• Pending now: [yellow]{stats.get("pending", 0)}[/yellow]
• Running now: [cyan]{stats.get("running", 0)}[/cyan]
• Success rate: [green]{stats.get("success_rate", 0)}%[/green]
"""

    by_type = stats.get("by_type") or {}
    if by_type:
        content += "\n[bold]By type[/bold]\n"
        for job_type, count in sorted(by_type.items()):
            content += f"• {job_type}: {count}\n"

    return Panel(content, title="Job Statistics", border_style="green")


def create_cron_jobs_table(cron_jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for cron schedules"""
    table = Table(title="Cron Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Name", justify="left", style="white")
    table.add_column("Expression", justify="left", style="magenta")
    table.add_column("Strategy", justify="center")
    table.add_column("State", justify="center")
    table.add_column("Runs", justify="center")
    table.add_column("Next run", justify="left", style="yellow")

    for cron_job in cron_jobs:
        if not cron_job.get("is_active"):
            state = "[dim]inactive[/dim]"
        elif cron_job.get("is_paused"):
            state = "[red]paused[/red]"
        else:
            state = "[green]active[/green]"

        table.add_row(
            str(cron_job.get("id", ""))[:8],
            cron_job.get("name", ""),
            f"{cron_job.get('cron_expression', '')} ({cron_job.get('timezone', 'UTC')})",
            cron_job.get("job_type", ""),
            state,
            f"{cron_job.get('success_count', 0)}/{cron_job.get('run_count', 0)}",
            str(cron_job.get("next_run_at") or "—"),
        )

    return table
