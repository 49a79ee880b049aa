"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

USER_ID_STRATEGIES = ("sequence", "uuid")


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")
        else:
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class OAuth2Provider:
    """One OpenID Connect provider registration."""
    name: str
    issuer: str
    client_id: str
    client_secret: str = ""
    scope: str = "openid email profile"

    @property
    def server_metadata_url(self) -> str:
        return f"{self.issuer.rstrip('/')}/.well-known/openid-configuration"


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str
    session_type: str = "filesystem"

    # Tokens
    jwt_issuer: str = "crud-backend"
    access_token_expiration: int = 86400
    default_api_token_expiration: int = 2592000

    # Users and roles
    user_id_strategy: str = "sequence"
    default_role: str = "USER"
    max_failed_login_attempts: int = 10

    # Initial admin
    admin_email: str = ""
    admin_password: str = ""
    admin_first_name: str = "Admin"
    admin_last_name: str = "User"

    # OAuth2
    oauth2_providers: list[OAuth2Provider] = field(default_factory=list)
    oauth2_allow_signup: bool = False
    oauth2_update_role: bool = False
    oauth2_roles_claim: str = ""
    oauth2_role_mappings: dict[str, str] = field(default_factory=dict)
    oauth2_default_redirect_url: str = "/"
    oauth2_allowed_redirect_urls: list[str] = field(default_factory=list)

    # Audit
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""

    def oauth2_provider(self, name: str) -> Optional[OAuth2Provider]:
        return next((p for p in self.oauth2_providers if p.name == name), None)


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _bool(var_name: str, default: bool = False) -> bool:
    return os.environ.get(var_name, str(default)).strip().lower() == "true"


def _int(var_name: str, default: int) -> int:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer, got {raw!r}")
    if value < 0:
        raise RuntimeError(f"Environment variable {var_name} must not be negative")
    return value


def _csv(var_name: str, default: str = "") -> list[str]:
    return [item.strip() for item in os.environ.get(var_name, default).split(",") if item.strip()]


def _load_oauth2_providers() -> list[OAuth2Provider]:
    providers = []
    for name in _csv("OAUTH2_PROVIDERS"):
        prefix = f"OAUTH2_{name.upper()}"
        issuer = os.environ.get(f"{prefix}_ISSUER", "").strip()
        client_id = os.environ.get(f"{prefix}_CLIENT_ID", "").strip()
        if not issuer or not client_id:
            raise RuntimeError(f"OAuth2 provider '{name}' requires {prefix}_ISSUER and {prefix}_CLIENT_ID")
        client_secret = _load_secret_from_file(f"oauth2_{name.lower()}_client_secret", f"{prefix}_CLIENT_SECRET") or ""
        providers.append(OAuth2Provider(
            name=name.lower(),
            issuer=issuer,
            client_id=client_id,
            client_secret=client_secret,
            scope=os.environ.get(f"{prefix}_SCOPE", "openid email profile"),
        ))
    return providers


def _parse_role_mappings(raw: list[str]) -> dict[str, str]:
    """"src:DST" pairs → {"src": "DST"}."""
    mappings = {}
    for pair in raw:
        source, sep, target = pair.partition(":")
        if not sep or not source.strip() or not target.strip():
            raise RuntimeError(f"Invalid OAUTH2_ROLE_MAPPINGS entry: {pair!r} (expected src:ROLE)")
        mappings[source.strip()] = target.strip().upper()
    return mappings


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _bool("DEMO_MODE")

    # ─────────────────────────────────────────────────────────────────────────
    # Secrets: /run/secrets > environment variables > demo defaults
    # ─────────────────────────────────────────────────────────────────────────

    secret_key = _load_secret_from_file("secret_key", "SECRET_KEY")
    if not secret_key:
        if not demo_mode:
            raise RuntimeError("SECRET_KEY not found in /run/secrets or environment")
        secret_key = secrets.token_urlsafe(48)
        print("[demo-mode] Generated temporary SECRET_KEY (tokens do not survive restarts)")

    admin_password = _load_secret_from_file("admin_password", "ADMIN_PASSWORD")
    if not admin_password and demo_mode:
        admin_password = "Admin123!"
        print("[demo-mode] Using default ADMIN_PASSWORD")

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = "demo-audit-signing-key-change-in-production"
        print("[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY")

    # ─────────────────────────────────────────────────────────────────────────
    # Plain settings
    # ─────────────────────────────────────────────────────────────────────────

    user_id_strategy = os.environ.get("USER_ID_STRATEGY", "sequence").strip().lower()
    if user_id_strategy not in USER_ID_STRATEGIES:
        raise RuntimeError(f"USER_ID_STRATEGY must be one of {', '.join(USER_ID_STRATEGIES)}")

    admin_email = _get_or_generate(
        "ADMIN_EMAIL", demo_default="admin@example.com", required=False, demo_mode=demo_mode
    ).strip().lower()

    cfg = AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        session_type=os.environ.get("FLASK_SESSION_TYPE", "filesystem"),
        jwt_issuer=os.environ.get("JWT_ISSUER", "crud-backend"),
        access_token_expiration=_int("ACCESS_TOKEN_EXPIRATION", 86400),
        default_api_token_expiration=_int("DEFAULT_API_TOKEN_EXPIRATION", 2592000),
        user_id_strategy=user_id_strategy,
        default_role=os.environ.get("DEFAULT_ROLE", "USER").strip().upper(),
        max_failed_login_attempts=_int("MAX_FAILED_LOGIN_ATTEMPTS", 10),
        admin_email=admin_email,
        admin_password=admin_password or "",
        admin_first_name=os.environ.get("ADMIN_FIRST_NAME", "Admin"),
        admin_last_name=os.environ.get("ADMIN_LAST_NAME", "User"),
        oauth2_providers=_load_oauth2_providers(),
        oauth2_allow_signup=_bool("OAUTH2_ALLOW_SIGNUP"),
        oauth2_update_role=_bool("OAUTH2_UPDATE_ROLE"),
        oauth2_roles_claim=os.environ.get("OAUTH2_ROLES_CLAIM", "").strip(),
        oauth2_role_mappings=_parse_role_mappings(_csv("OAUTH2_ROLE_MAPPINGS")),
        oauth2_default_redirect_url=os.environ.get("OAUTH2_DEFAULT_REDIRECT_URL", "/"),
        oauth2_allowed_redirect_urls=_csv("OAUTH2_ALLOWED_REDIRECT_URLS"),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"),
        audit_log_signing_key=audit_log_signing_key or "",
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    providers = ",".join(p.name for p in cfg.oauth2_providers) or "none"
    print(f"[settings] Mode={mode_label}; user_ids={user_id_strategy}; oauth2_providers={providers}")
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return cfg
