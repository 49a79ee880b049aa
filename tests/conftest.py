"""Pytest shared fixtures: configuration, services, Flask app and auth helpers."""
import datetime
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from backend.config import AppConfig
from backend.core.initialization import initialize_data
from backend.core.registry import build_services
from backend.flask_app import create_app

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-bytes-of-entropy"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin123!"
USER_PASSWORD = "Secret123"
TODAY = datetime.date(2030, 1, 15)


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Prevent tests from hitting live identity providers."""

    def _refuse(self, method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests.Session, "request", _refuse)


# ─────────────────────────────────────────────────────────────────────────────
# Configuration and services
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def cfg(tmp_path, monkeypatch):
    """Isolated production-mode configuration."""
    monkeypatch.setenv("FLASK_SESSION_DIR", str(tmp_path / "sessions"))
    return AppConfig(
        demo_mode=False,
        secret_key=TEST_SECRET_KEY,
        jwt_issuer="crud-backend-test",
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
        admin_first_name="Ada",
        admin_last_name="Admin",
        max_failed_login_attempts=3,
        audit_log_dir=str(tmp_path / "audit"),
        audit_log_signing_key="test-audit-signing-key",
    )


class Caller:
    """Stand-in for the request principal used by services outside Flask."""

    def __init__(self):
        self.principal = None

    def __call__(self):
        return self.principal


@pytest.fixture()
def caller():
    return Caller()


@pytest.fixture()
def services(cfg, caller):
    """Initialized service registry with a fixed 'today'."""
    registry = build_services(cfg, current_principal=caller, today=lambda: TODAY)
    initialize_data(registry, cfg)
    return registry


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app(cfg):
    flask_app = create_app(cfg)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


# ─────────────────────────────────────────────────────────────────────────────
# Authentication Helpers
# ─────────────────────────────────────────────────────────────────────────────
def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def login(client, username: str, password: str) -> str:
    response = client.post("/auth/token", json={"username": username, "password": password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()["token"]


def create_user(client, admin_token: str, email: str, roles=("USER",), password: str = USER_PASSWORD, **extra) -> dict:
    payload = {"email": email, "firstName": "Test", "lastName": "User", "roles": list(roles), "password": password}
    payload.update(extra)
    response = client.post("/v1/users", json=payload, headers=auth_header(admin_token))
    assert response.status_code == 201, response.get_json()
    return response.get_json()


@pytest.fixture()
def admin_token(client):
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture()
def user_token(client, admin_token):
    create_user(client, admin_token, "grace@example.com")
    return login(client, "grace@example.com", USER_PASSWORD)


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "critical: marks tests as critical security tests (P0 priority)"
    )
