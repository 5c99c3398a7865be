from fastapi.testclient import TestClient

from main import app


def test_health_returns_ok() -> None:
    with TestClient(app) as client:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"ok": True}


def test_root_reports_service_identity() -> None:
    with TestClient(app) as client:
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "searchgate"
        assert body["docs"] == "/docs"
        assert body["strategy"] in {
            "round-robin",
            "weighted",
            "least-connections",
            "health-based",
        }
