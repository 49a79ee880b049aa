"""Authentication routes: local login and OAuth2/OIDC login.

Multi-IdP Support:
- Providers come from OAUTH2_PROVIDERS (one Authlib client each)
- GET /auth/oauth-registrations lists them
- GET /auth/oauth2/<provider>?redirect_url=... starts the authorization code flow
- The callback provisions/updates the local user and redirects to the
  allowed redirect URL with ?token=<jwt> or ?login_failure
"""
from __future__ import annotations
import logging
from urllib.parse import urlencode

from authlib.integrations.base_client import OAuthError
from authlib.integrations.flask_client import OAuth
from flask import Blueprint, abort, current_app, g, jsonify, redirect, request, session, url_for

from backend.core.dto import LoginRequest
from backend.core.exceptions import AuthenticationError
from .decorators import get_services, require_token
from .rest import json_body

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

REDIRECT_SESSION_KEY = "oauth2_redirect_url"


def init_oauth(app, cfg) -> OAuth:
    """Register one OIDC client per configured provider."""
    oauth = OAuth(app)
    for provider in cfg.oauth2_providers:
        oauth.register(
            name=provider.name,
            server_metadata_url=provider.server_metadata_url,
            client_id=provider.client_id,
            client_secret=provider.client_secret or None,
            client_kwargs={"scope": provider.scope},
        )
        logger.info(f"Registered OAuth2 provider '{provider.name}' ({provider.issuer})")
    app.config["OAUTH"] = oauth
    return oauth


def get_oauth_client(provider: str):
    """Registered client for ``provider``; 404 if the provider is not configured."""
    cfg = current_app.config["APP_CONFIG"]
    if cfg.oauth2_provider(provider) is None:
        abort(404, description=f"Unknown OAuth2 provider '{provider}'")
    return current_app.config["OAUTH"].create_client(provider)


def is_allowed_redirect(url: str) -> bool:
    cfg = current_app.config["APP_CONFIG"]
    return url == cfg.oauth2_default_redirect_url or url in cfg.oauth2_allowed_redirect_urls


def _append_query(url: str, query: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


# ─────────────────────────────────────────────────────────────────────────────
# Local login
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/token", methods=["POST"])
def login():
    """Exchange username/password for an ACCESS token.

    Failed attempts are counted; the login is disabled once
    MAX_FAILED_LOGIN_ATTEMPTS is reached.
    """
    services = get_services()
    credentials = LoginRequest.from_payload(json_body())
    try:
        token = services.authentication.login(credentials.username, credentials.password)
    except AuthenticationError:
        services.audit.safe_record(
            "login_failure", "User", credentials.username, operator=credentials.username, success=False
        )
        raise
    services.audit.safe_record("login", "User", credentials.username, operator=credentials.username)
    return jsonify({"token": token})


@bp.route("/renew", methods=["POST"])
@require_token()
def renew():
    """Exchange the caller's ACCESS token for a fresh one; the presented token stops working."""
    services = get_services()
    token = services.authentication.renew(g.token)
    return jsonify({"token": token})


# ─────────────────────────────────────────────────────────────────────────────
# OAuth2 / OIDC
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/oauth-registrations", methods=["GET"])
def oauth_registrations():
    """Configured providers keyed by name, with the URL that starts their login."""
    cfg = current_app.config["APP_CONFIG"]
    return jsonify({
        provider.name: {"name": provider.name, "url": url_for("auth.oauth2_login", provider=provider.name)}
        for provider in cfg.oauth2_providers
    })


@bp.route("/oauth2/<provider>", methods=["GET"])
def oauth2_login(provider: str):
    """Redirect to the provider's authorization endpoint."""
    cfg = current_app.config["APP_CONFIG"]
    client = get_oauth_client(provider)

    target = request.args.get("redirect_url") or cfg.oauth2_default_redirect_url
    if not is_allowed_redirect(target):
        logger.warning(f"OAuth2 login with disallowed redirect URL rejected: {target}")
        abort(400, description="Redirect URL is not allowed")
    session[REDIRECT_SESSION_KEY] = target

    redirect_uri = url_for("auth.oauth2_callback", provider=provider, _external=True)
    return client.authorize_redirect(redirect_uri)


@bp.route("/oauth2/<provider>/callback", methods=["GET"])
def oauth2_callback(provider: str):
    """Finish the authorization code flow and hand the ACCESS token to the frontend."""
    cfg = current_app.config["APP_CONFIG"]
    services = get_services()
    client = get_oauth_client(provider)
    target = session.pop(REDIRECT_SESSION_KEY, None) or cfg.oauth2_default_redirect_url

    try:
        provider_token = client.authorize_access_token()
    except OAuthError as e:
        logger.warning(f"OAuth2 authorization with '{provider}' failed: {e}")
        return redirect(_append_query(target, "login_failure"))

    userinfo = provider_token.get("userinfo") or client.userinfo(token=provider_token)
    userinfo = dict(userinfo or {})
    subject_name = userinfo.get("preferred_username") or userinfo.get("sub")

    try:
        access_token = services.authentication.oauth2_login(provider, userinfo, subject_name)
    except AuthenticationError as e:
        logger.warning(f"OAuth2 login via '{provider}' rejected: {e}")
        access_token = None

    operator = str(subject_name or "system")
    if access_token is None:
        services.audit.safe_record("login_failure", "User", subject_name, operator=operator, success=False)
        return redirect(_append_query(target, "login_failure"))

    services.audit.safe_record("login", "User", subject_name, operator=operator)
    return redirect(_append_query(target, urlencode({"token": access_token})))
