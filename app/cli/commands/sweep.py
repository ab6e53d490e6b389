"""
Sweep commands.

These talk to MongoDB and RabbitMQ directly (same settings as the service),
so an operator can run a pass while the API is down or the scheduler is
disabled.
"""

import asyncio
from typing import Annotated, Optional

import typer

from app.cli.output import print_error, print_history_table, print_success, print_sweep_result
from app.core.database import close_database, init_database

app = typer.Typer(help="Schedule sweep commands")


async def _run_sweep() -> dict:
    from app.scheduler.jobs.sweep import run_schedule_sweep
    from app.services.dependencies import get_notification_publisher

    await init_database()
    try:
        return await run_schedule_sweep()
    finally:
        await get_notification_publisher().close()
        await close_database()


async def _load_history(status: str | None, limit: int) -> list[dict]:
    from app.scheduler.history import get_job_history
    from app.scheduler.jobs.sweep import JOB_ID

    await init_database()
    try:
        return await get_job_history(job_id=JOB_ID, status=status, limit=limit)
    finally:
        await close_database()


@app.command("run")
def run() -> None:
    """
    Run one sweep pass now.

    Exits 1 if the pass itself failed or any schedule could not be processed.
    """
    try:
        result = asyncio.run(_run_sweep())
    except Exception as e:
        print_error(f"Sweep failed: {getattr(e, 'message', str(e))}")
        raise typer.Exit(1)

    print_sweep_result(result)
    if result.get("errors"):
        raise typer.Exit(1)
    print_success("Sweep completed")


@app.command("history")
def history(
    status: Annotated[
        Optional[str], typer.Option("--status", "-s", help="Filter by status (success, failed)")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of runs to show")] = 20,
) -> None:
    """Show recent sweep runs."""
    try:
        records = asyncio.run(_load_history(status, limit))
    except Exception as e:
        print_error(f"Failed to load history: {str(e)}")
        raise typer.Exit(1)

    print_history_table(records, title="Sweep History")
