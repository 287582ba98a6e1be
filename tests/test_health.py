"""API health endpoint tests."""

from fastapi.testclient import TestClient

from services.analysis_gateway.app import app
from services.analysis_gateway.dependencies import reset_state, use_backends

client = TestClient(app)


class HealthyBackend:
    async def generate(self, tier, prompt: str, image_b64: str) -> str:
        return "NO CONCERN"

    async def is_healthy(self) -> bool:
        return True


def setup_function() -> None:
    reset_state()


def test_health_ok() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_ready_reports_stopped_queue() -> None:
    use_backends(HealthyBackend())

    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"
    assert response.json()["queue_running"] is False


def test_ready_ok_when_running() -> None:
    use_backends(HealthyBackend())

    with TestClient(app) as live:
        response = live.get("/ready")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ready",
        "queue_running": True,
        "inference_backend": "ok",
    }


def test_version_ok() -> None:
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": "0.1.0"}
