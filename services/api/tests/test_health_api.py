from fastapi.testclient import TestClient


def test_live(client: TestClient):
    response = client.get("/api/health/live")

    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ok"}
    assert response.headers["x-request-id"] == response.json()["request_id"]


def test_ready_requires_default_tenant(client: TestClient):
    response = client.get("/api/health/ready")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "DEFAULT_TENANT_MISSING"


def test_ready_after_seed(client: TestClient, seed):
    response = client.get("/api/health/ready")

    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ready"}
    assert response.json()["meta"]["tenant"] == {"id": "default", "method": "default"}
