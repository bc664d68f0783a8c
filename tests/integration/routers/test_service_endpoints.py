from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient

from hello_api.config.settings import Settings
from hello_api.main import create_app


def test_root_says_hello(client: TestClient) -> None:
    resp = client.get("/")

    assert resp.status_code == 200
    assert resp.text == "Hello, World!\n"
    assert resp.headers["content-type"].startswith("text/plain")


def test_health_report(client: TestClient) -> None:
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["environment"] == "test"
    assert body["uptime"] >= 0
    assert set(body["memory"]) == {"rss", "rssMb"}
    assert body["timestamp"].endswith("Z")


def test_health_hides_environment_in_production(make_settings: Callable[..., Settings]) -> None:
    app = create_app(make_settings(ENVIRONMENT="production"))
    body = TestClient(app).get("/health").json()

    assert body["status"] == "healthy"
    assert "environment" not in body


def test_liveness(client: TestClient) -> None:
    body = client.get("/health/live").json()
    assert body["status"] == "alive"
    assert set(body) == {"status", "timestamp"}


def test_readiness(client: TestClient) -> None:
    resp = client.get("/health/ready")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ready"
    assert resp.json()["checks"] == {"process": True, "configuration": True}


def test_api_discovery(client: TestClient) -> None:
    body = client.get("/api").json()

    assert body["success"] is True
    assert body["message"] == "API information retrieved successfully"
    data = body["data"]
    assert data["name"] == "Hello World API"
    assert data["environment"] == "test"
    paths = {(e["method"], e["path"]) for e in data["endpoints"]}
    assert ("GET", "/api/users") in paths
    assert ("DELETE", "/api/users/{id}") in paths
    assert ("GET", "/api/health") in paths


def test_api_detailed_health(client: TestClient) -> None:
    client.get("/api/users")
    body = client.get("/api/health").json()

    assert body["message"] == "API health check completed - Status: healthy"
    data = body["data"]
    assert data["status"] == "healthy"
    assert set(data["uptime"]) == {"seconds", "human"}
    assert set(data["cpu"]) == {"user", "system"}
    assert set(data["dependencies"]) == {"usersRepository", "schemaCache"}
    assert data["validation"]["cache"]["size"] >= 1
    assert {"hits", "misses", "hit_rate"} <= set(data["validation"]["cache"])


def test_metrics_exposition(client: TestClient) -> None:
    client.get("/")
    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    text = resp.text
    assert "http_requests_total" in text
    assert "http_server_request_duration_seconds_bucket" in text
    assert "validation_cache_hits_total" in text


def test_openapi_operation_ids_are_stable(client: TestClient) -> None:
    operations = {
        op["operationId"]
        for path in client.get("/openapi.json").json()["paths"].values()
        for op in path.values()
    }
    assert {"users_list", "users_create", "users_get", "users_update", "users_delete"} <= operations
