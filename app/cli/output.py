"""Output formatting utilities for CLI."""

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from app.cli.config import get_config

console = Console()
error_console = Console(stderr=True)


def format_timestamp(ts: str | datetime | None) -> str:
    """Format a timestamp for display."""
    if ts is None:
        return "-"
    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S")


def format_status(status: str) -> Text:
    """Format status with color."""
    colors = {
        "scheduled": "blue",
        "submitted": "green",
        "expired": "red",
        "cancelled": "dim",
        "success": "green",
        "failed": "red",
        "healthy": "green",
        "degraded": "yellow",
        "unhealthy": "red",
        "disabled": "dim",
        "ready": "green",
        "not_ready": "red",
        "alive": "green",
    }
    color = colors.get(status.lower(), "white")
    return Text(status, style=color)


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, default=str, indent=2))


def print_error(message: str, details: dict | None = None) -> None:
    """Print an error message."""
    error_console.print(f"[red]Error:[/red] {message}")
    if details:
        for key, value in details.items():
            error_console.print(f"  [dim]{key}:[/dim] {value}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_health_status(data: dict, title: str = "Health Status") -> None:
    """Print health status in a formatted panel."""
    config = get_config()
    if config.output_format == "json":
        print_json(data)
        return

    status = data.get("status", "unknown")

    panel_content = Text()
    panel_content.append("Status: ")
    panel_content.append(format_status(status))

    if "timestamp" in data:
        panel_content.append(f"\nTimestamp: {format_timestamp(data['timestamp'])}")

    if "environment" in data:
        panel_content.append(f"\nEnvironment: {data['environment']}")

    border = "green" if status in ("healthy", "ready", "alive") else "red"
    console.print(Panel(panel_content, title=title, border_style=border))

    deps = data.get("dependencies", data.get("checks", {}))
    if deps:
        table = Table(title="Dependencies", show_header=True)
        table.add_column("Service", style="cyan")
        table.add_column("Status")
        table.add_column("Latency (ms)", justify="right")

        if isinstance(deps, dict):
            for name, dep_status in deps.items():
                table.add_row(name, format_status(str(dep_status)), "-")
        else:
            for dep in deps:
                latency = dep.get("latency_ms")
                table.add_row(
                    dep.get("name", "unknown"),
                    format_status(str(dep.get("status", "unknown"))),
                    f"{latency:.1f}" if latency is not None else "-",
                )

        console.print(table)


def print_schedules_table(data: dict, title: str = "Application Schedules") -> None:
    """Print schedules in a table format."""
    config = get_config()
    if config.output_format == "json":
        print_json(data)
        return

    items = data.get("items", [])
    if not items:
        print_warning("No schedules found")
        return

    table = Table(title=title, show_header=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Job", max_width=40)
    table.add_column("Scheduled")
    table.add_column("Deadline")
    table.add_column("Zone")
    table.add_column("Status")

    for item in items:
        job = item.get("job") or {}
        label = " @ ".join(part for part in (job.get("title"), job.get("company")) if part)
        table.add_row(
            item.get("_id", "-"),
            label or item.get("jobId", "-"),
            format_timestamp(item.get("scheduledAt")),
            format_timestamp(item.get("deadlineAt")),
            item.get("timezone", "-"),
            format_status(item.get("status", "unknown")),
        )

    console.print(table)
    console.print(f"[dim]{len(items)} schedule(s)[/dim]")


def print_sweep_result(data: dict) -> None:
    """Print the counters of one sweep pass."""
    config = get_config()
    if config.output_format == "json":
        print_json(data)
        return

    table = Table(title="Sweep Result", show_header=True)
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")

    for key in (
        "expired",
        "submitted",
        "reminders_queued",
        "reminders_skipped",
        "notifications_sent",
        "notifications_failed",
        "jobs_synced",
        "errors",
    ):
        table.add_row(key.replace("_", " "), str(data.get(key, 0)))

    console.print(table)
    for detail in data.get("error_details", []):
        error_console.print(f"  [red]•[/red] {detail}")


def print_history_table(records: list[dict], title: str = "Job History") -> None:
    """Print background job executions."""
    config = get_config()
    if config.output_format == "json":
        print_json(records)
        return

    if not records:
        print_info("No executions recorded")
        return

    table = Table(title=title, show_header=True)
    table.add_column("Executed", style="cyan")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Error", max_width=50)

    for record in records:
        table.add_row(
            format_timestamp(record.get("executed_at")),
            record.get("job_name", "-"),
            format_status(record.get("status", "unknown")),
            str(record.get("duration_ms", 0)),
            (record.get("error") or "")[:50],
        )

    console.print(table)
