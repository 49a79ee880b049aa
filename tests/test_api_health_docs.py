"""Health, readiness and OpenAPI endpoints."""
from flask import Flask

from backend.api.health import bp as health_bp


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.data == b"ok"
    assert response.content_type.startswith("text/plain")


def test_ready_after_initialization(client):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.data == b"ready"


def test_not_ready_without_services():
    app = Flask(__name__)
    app.register_blueprint(health_bp)
    with app.test_client() as client:
        response = client.get("/ready")
    assert response.status_code == 503
    assert response.data == b"not ready"


def test_openapi_document(client):
    response = client.get("/openapi.json")
    assert response.status_code == 200
    document = response.get_json()
    assert document["openapi"].startswith("3.")
    for path in (
        "/auth/token", "/auth/renew", "/v1/users", "/v1/users/me", "/v1/users/{id}/terminate",
        "/v1/set-password", "/v1/roles/{name}", "/v1/rights", "/v1/api-tokens/{id}",
    ):
        assert path in document["paths"], path
    assert "bearerAuth" in document["components"]["securitySchemes"]


def test_openapi_path_override(app, tmp_path):
    spec = tmp_path / "openapi.yaml"
    spec.write_text("openapi: 3.0.3\ninfo:\n  title: Override\n  version: '0'\npaths: {}\n")
    app.config["OPENAPI_SPEC_PATH"] = str(spec)
    with app.test_client() as client:
        assert client.get("/openapi.json").get_json()["info"]["title"] == "Override"
