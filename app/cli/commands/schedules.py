"""Schedule inspection commands."""

from typing import Annotated, Optional

import typer

from app.cli.client import APIError, get_client
from app.cli.output import print_error, print_schedules_table

app = typer.Typer(help="Application schedule commands")


@app.command("list")
def list_schedules(
    user_id: Annotated[
        Optional[str],
        typer.Option("--user-id", help="User to act for (requires a service key)"),
    ] = None,
    status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="scheduled, submitted, expired or cancelled"),
    ] = None,
    date_from: Annotated[
        Optional[str], typer.Option("--from", help="Earliest scheduled time (ISO-8601)")
    ] = None,
    date_to: Annotated[
        Optional[str], typer.Option("--to", help="Latest scheduled time (ISO-8601)")
    ] = None,
) -> None:
    """
    List a user's application schedules.

    Uses the configured JWT, or the service key together with --user-id.
    """
    client = get_client()

    try:
        data = client.list_schedules(user_id=user_id, status=status, date_from=date_from, date_to=date_to)
    except APIError as e:
        print_error(f"Failed to list schedules: {e.message}", e.details)
        raise typer.Exit(1)
    except Exception as e:
        print_error(f"Connection failed: {str(e)}")
        raise typer.Exit(1)

    print_schedules_table(data)
