"""CLI entry point for Application Scheduler Service."""

import os
from typing import Annotated, Optional

import typer
from rich.console import Console

from app.cli.commands import health, schedules, sweep

# Version from pyproject.toml
__version__ = "1.0.0"

# Create main app
app = typer.Typer(
    name="appsched",
    help="Application Scheduler Service CLI - Inspect schedules and run the sweep",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register sub-commands
app.add_typer(health.app, name="health", help="Health check commands")
app.add_typer(schedules.app, name="schedules", help="Application schedules")
app.add_typer(sweep.app, name="sweep", help="Schedule sweep")

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"appsched version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
    api_url: Annotated[
        Optional[str],
        typer.Option("--api-url", "-u", envvar="APPSCHED_API_URL", help="API URL"),
    ] = None,
    token: Annotated[
        Optional[str],
        typer.Option("--token", "-t", envvar="APPSCHED_API_TOKEN", help="JWT token"),
    ] = None,
    output_format: Annotated[
        Optional[str],
        typer.Option("--output", "-o", help="Output format (table, json)"),
    ] = None,
) -> None:
    """
    Application Scheduler Service CLI.

    [bold]Quick Start:[/bold]

        # Check service health
        appsched health

        # List a user's schedules (service key + user id)
        APPSCHED_SERVICE_KEY=... appsched schedules list --user-id <id>

        # Run one sweep pass against the configured database
        appsched sweep run

        # Recent sweep runs
        appsched sweep history

    [bold]Environment Variables:[/bold]

        APPSCHED_API_URL      - API URL
        APPSCHED_API_TOKEN    - JWT authentication token
        APPSCHED_SERVICE_KEY  - Service API key
    """
    # Override config with CLI options
    if api_url:
        os.environ["APPSCHED_API_URL"] = api_url
    if token:
        os.environ["APPSCHED_API_TOKEN"] = token
    if output_format:
        os.environ["APPSCHED_OUTPUT_FORMAT"] = output_format

    from app.cli.client import reset_client
    from app.cli.config import reset_config

    reset_config()
    reset_client()


if __name__ == "__main__":
    app()
