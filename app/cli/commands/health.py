"""Service health commands."""

import typer

from app.cli.client import APIError, get_client
from app.cli.output import print_error, print_health_status, print_warning

app = typer.Typer(help="Health check commands")

OK_STATUSES = {"healthy", "ready", "alive"}

# what a failing non-critical dependency means for users of the service
DEGRADED_EFFECTS = {
    "rabbitmq": "notifications stay queued in the schedules until RabbitMQ is reachable",
    "scheduler": "due schedules are not swept; run `appsched sweep run` or restart the service",
}


def _degraded_dependencies(data: dict) -> list[str]:
    deps = data.get("dependencies") or []
    return [dep.get("name", "unknown") for dep in deps if dep.get("status") == "unhealthy"]


@app.callback(invoke_without_command=True)
def health(
    ctx: typer.Context,
    live: bool = typer.Option(False, "--live", "-l", help="Check liveness only"),
    ready: bool = typer.Option(False, "--ready", "-r", help="Check readiness only"),
    strict: bool = typer.Option(False, "--strict", help="Treat a degraded service as a failure"),
) -> None:
    """
    Check service health status.

    MongoDB is the only critical dependency. When RabbitMQ or the sweep
    scheduler is down the service reports ``degraded``, which exits 0
    unless --strict is given.
    """
    if ctx.invoked_subcommand is not None:
        return

    client = get_client()
    if live:
        probe, title = client.health_live, "Liveness Check"
    elif ready:
        probe, title = client.health_ready, "Readiness Check"
    else:
        probe, title = client.health, "Health Status"

    try:
        data = probe()
    except APIError as e:
        # 503 bodies still describe the dependencies
        if e.details.get("status"):
            print_health_status(e.details, title=title)
        print_error(f"Health check failed: {e.message}")
        raise typer.Exit(1)
    except Exception as e:
        print_error(f"Connection failed: {str(e)}")
        raise typer.Exit(1)

    print_health_status(data, title=title)

    status = str(data.get("status", "unknown")).lower()
    if status == "degraded":
        for name in _degraded_dependencies(data):
            print_warning(f"{name}: {DEGRADED_EFFECTS.get(name, 'unavailable')}")
        if strict:
            raise typer.Exit(2)
        return
    if status not in OK_STATUSES:
        raise typer.Exit(1)
