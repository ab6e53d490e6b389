"""Tests for CLI commands."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from app.cli.client import APIError
from app.cli.main import app

runner = CliRunner()

SCHEDULES = {
    "items": [
        {
            "_id": "665f00000000000000000001",
            "jobId": "665f00000000000000000002",
            "scheduledAt": "2025-06-03T13:00:00Z",
            "deadlineAt": None,
            "timezone": "America/New_York",
            "status": "scheduled",
            "job": {"title": "Backend Engineer", "company": "Acme Corp"},
        }
    ]
}
SWEEP_RESULT = {
    "started_at": "2025-06-02T14:00:00.000Z",
    "finished_at": "2025-06-02T14:00:01.000Z",
    "expired": 1,
    "submitted": 2,
    "reminders_queued": 0,
    "reminders_skipped": 0,
    "notifications_sent": 3,
    "notifications_failed": 0,
    "jobs_synced": 0,
    "errors": 0,
    "error_details": [],
}


@pytest.fixture(autouse=True)
def cli_env(monkeypatch):
    for name in ("APPSCHED_API_URL", "APPSCHED_API_TOKEN", "APPSCHED_SERVICE_KEY", "APPSCHED_OUTPUT_FORMAT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def json_output(monkeypatch):
    monkeypatch.setenv("APPSCHED_OUTPUT_FORMAT", "json")


@pytest.fixture
def mock_client():
    client = MagicMock()
    with patch("app.cli.commands.health.get_client", return_value=client), \
         patch("app.cli.commands.schedules.get_client", return_value=client):
        yield client


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "appsched version" in result.stdout


class TestHealthCommand:
    def test_healthy(self, mock_client):
        mock_client.health.return_value = {
            "status": "healthy",
            "timestamp": "2025-06-02T14:00:00.000Z",
            "dependencies": [{"name": "mongodb", "status": "healthy", "latency_ms": 1.2}],
        }

        result = runner.invoke(app, ["health"])

        assert result.exit_code == 0
        assert "Health Status" in result.stdout

    def test_degraded_is_not_a_failure(self, mock_client):
        mock_client.health.return_value = {
            "status": "degraded",
            "dependencies": [{"name": "rabbitmq", "status": "unhealthy"}],
        }

        result = runner.invoke(app, ["health"])

        assert result.exit_code == 0
        assert "notifications stay queued" in result.stdout

    def test_degraded_strict(self, mock_client):
        mock_client.health.return_value = {
            "status": "degraded",
            "dependencies": [{"name": "scheduler", "status": "unhealthy"}],
        }

        result = runner.invoke(app, ["health", "--strict"])

        assert result.exit_code == 2

    def test_unhealthy(self, mock_client):
        mock_client.health.side_effect = APIError(503, "unhealthy", {"status": "unhealthy"})

        result = runner.invoke(app, ["health"])

        assert result.exit_code == 1

    def test_live(self, mock_client):
        mock_client.health_live.return_value = {"status": "alive", "timestamp": "2025-06-02T14:00:00Z"}

        result = runner.invoke(app, ["health", "--live"])

        assert result.exit_code == 0
        mock_client.health_live.assert_called_once()
        mock_client.health.assert_not_called()

    def test_ready(self, mock_client):
        mock_client.health_ready.return_value = {"status": "ready", "checks": {"mongodb": "ready"}}

        result = runner.invoke(app, ["health", "--ready"])

        assert result.exit_code == 0

    def test_connection_refused(self, mock_client):
        mock_client.health.side_effect = ConnectionError("refused")

        result = runner.invoke(app, ["health"])

        assert result.exit_code == 1


class TestSchedulesCommand:
    def test_list(self, mock_client, json_output):
        mock_client.list_schedules.return_value = SCHEDULES

        result = runner.invoke(
            app, ["schedules", "list", "--user-id", "user-1", "--status", "scheduled", "--from", "2025-06-01"]
        )

        assert result.exit_code == 0
        assert '"status": "scheduled"' in result.stdout
        mock_client.list_schedules.assert_called_once_with(
            user_id="user-1", status="scheduled", date_from="2025-06-01", date_to=None
        )

    def test_list_table(self, mock_client):
        mock_client.list_schedules.return_value = SCHEDULES

        result = runner.invoke(app, ["schedules", "list"])

        assert result.exit_code == 0
        assert "1 schedule(s)" in result.stdout

    def test_list_empty(self, mock_client):
        mock_client.list_schedules.return_value = {"items": []}

        result = runner.invoke(app, ["schedules", "list"])

        assert result.exit_code == 0
        assert "No schedules found" in result.stdout

    def test_list_unauthorized(self, mock_client):
        mock_client.list_schedules.side_effect = APIError(401, "Authentication required")

        result = runner.invoke(app, ["schedules", "list"])

        assert result.exit_code == 1


class TestSweepCommand:
    def test_run(self, json_output):
        with patch("app.cli.commands.sweep._run_sweep", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = SWEEP_RESULT
            result = runner.invoke(app, ["sweep", "run"])

        assert result.exit_code == 0
        assert '"submitted": 2' in result.stdout
        mock_run.assert_awaited_once()

    def test_run_with_errors(self):
        failing = {**SWEEP_RESULT, "errors": 1, "error_details": ["submit:abc: boom"]}
        with patch("app.cli.commands.sweep._run_sweep", new_callable=AsyncMock, return_value=failing):
            result = runner.invoke(app, ["sweep", "run"])

        assert result.exit_code == 1

    def test_run_failure(self):
        with patch("app.cli.commands.sweep._run_sweep", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = RuntimeError("mongo unreachable")
            result = runner.invoke(app, ["sweep", "run"])

        assert result.exit_code == 1

    def test_history(self):
        records = [
            {
                "executed_at": "2025-06-02T14:00:00Z",
                "job_name": "Schedule sweep",
                "status": "success",
                "duration_ms": 120,
                "error": None,
            }
        ]
        with patch("app.cli.commands.sweep._load_history", new_callable=AsyncMock) as mock_load:
            mock_load.return_value = records
            result = runner.invoke(app, ["sweep", "history", "--status", "failed", "-n", "5"])

        assert result.exit_code == 0
        mock_load.assert_awaited_once_with("failed", 5)

    def test_history_empty(self):
        with patch("app.cli.commands.sweep._load_history", new_callable=AsyncMock, return_value=[]):
            result = runner.invoke(app, ["sweep", "history"])

        assert result.exit_code == 0
        assert "No executions recorded" in result.stdout
