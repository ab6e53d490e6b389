import pytest
from unittest.mock import AsyncMock, MagicMock, patch

MODULE = "app.routers.healthcheck_router"


@pytest.fixture
def deps():
    """Patch every dependency the health checks probe; all healthy by default."""
    publisher = MagicMock()
    publisher.check_connection = AsyncMock()
    scheduler = MagicMock(running=True)

    with patch(f"{MODULE}.db_manager") as db_manager, \
         patch(f"{MODULE}.get_notification_publisher", return_value=publisher), \
         patch(f"{MODULE}.get_scheduler", return_value=scheduler), \
         patch(f"{MODULE}.settings") as settings:
        db_manager.ping = AsyncMock(return_value=True)
        settings.scheduler_enabled = True
        settings.environment = "test"
        yield {"db": db_manager, "publisher": publisher, "scheduler": scheduler, "settings": settings}


def _statuses(body):
    return {dep["name"]: dep["status"] for dep in body["dependencies"]}


def test_healthy(test_client, deps):
    response = test_client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["environment"] == "test"
    assert _statuses(body) == {"mongodb": "healthy", "rabbitmq": "healthy", "scheduler": "healthy"}


def test_rabbitmq_down_degrades(test_client, deps):
    deps["publisher"].check_connection.side_effect = ConnectionError("refused")

    response = test_client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    rabbit = next(dep for dep in body["dependencies"] if dep["name"] == "rabbitmq")
    assert rabbit["message"] == "refused"


def test_scheduler_stopped_degrades(test_client, deps):
    deps["scheduler"].running = False

    response = test_client.get("/health")

    assert response.json()["status"] == "degraded"


def test_scheduler_disabled(test_client, deps):
    deps["settings"].scheduler_enabled = False

    response = test_client.get("/health")

    assert response.json()["status"] == "healthy"
    assert _statuses(response.json())["scheduler"] == "disabled"


def test_mongodb_down_is_unhealthy(test_client, deps):
    deps["db"].ping.return_value = False

    response = test_client.get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "unhealthy"
    assert body["path"] == "/health"


def test_liveness(test_client):
    response = test_client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "alive"


def test_ready(test_client, deps):
    response = test_client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["checks"] == {"mongodb": "ready", "scheduler": "healthy"}


def test_not_ready(test_client, deps):
    deps["db"].ping.return_value = False

    response = test_client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


def test_metrics_endpoint(test_client):
    response = test_client.get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]
