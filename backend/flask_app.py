"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with services, blueprints and configuration.
"""
from __future__ import annotations
import os
from tempfile import gettempdir
from typing import Optional

from flask import Flask, g, has_app_context
from flask_session import Session

from backend.config import AppConfig, load_settings
from backend.core.initialization import initialize_data
from backend.core.registry import build_services


def _current_principal():
    """Principal resolved by @require_token, None outside a request."""
    if not has_app_context():
        return None
    return g.get("principal")


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(cfg: Optional[AppConfig] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        cfg: Configuration to use; loaded from the environment if omitted
    """
    if cfg is None:
        cfg = load_settings()

    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg

    # Flask session configuration (OAuth2 state and redirect target)
    app.config["SECRET_KEY"] = cfg.secret_key
    app.config["SESSION_TYPE"] = cfg.session_type
    if app.config["SESSION_TYPE"] == "filesystem":
        session_dir = os.environ.get("FLASK_SESSION_DIR") or os.path.join(gettempdir(), "crud_backend_flask_session")
        os.makedirs(session_dir, exist_ok=True)
        app.config["SESSION_FILE_DIR"] = session_dir
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"

    # Initialize session
    Session(app)

    # Services and startup data
    services = build_services(cfg, current_principal=_current_principal)
    app.config["SERVICES"] = services
    with app.app_context():
        initialize_data(services, cfg)

    # Initialize OAuth2 providers
    from backend.api import auth
    auth.init_oauth(app, cfg)

    # Register blueprints
    from backend.api import api_tokens, credentials, docs, errors, health, rights, roles, users

    app.register_blueprint(auth.bp, url_prefix="/auth")
    app.register_blueprint(health.bp)
    app.register_blueprint(docs.bp)
    app.register_blueprint(users.bp, url_prefix="/v1/users")
    app.register_blueprint(roles.bp, url_prefix="/v1/roles")
    app.register_blueprint(rights.bp, url_prefix="/v1/rights")
    app.register_blueprint(api_tokens.bp, url_prefix="/v1/api-tokens")
    app.register_blueprint(credentials.bp, url_prefix="/v1")

    # Register error handlers
    errors.register_error_handlers(app)

    # Log startup info
    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print("[flask_app] REST API registered at /v1")

    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - do not deploy with demo credentials")

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", "8080")))
