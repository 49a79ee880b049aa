"""Wiring of repositories and services.

Everything is built once per application and shared by all requests.
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .audit import AuditLog
from .authentication import AuthenticationService, OAuth2Options
from .models import UserDetails
from .repository import InMemoryRepository, NaturalIdentity, SequenceIdentity, UuidIdentity
from .services import ApiTokenService, RightService, RoleService, UserService
from .tokens import JwtTokenService


@dataclass
class ServiceRegistry:
    tokens: JwtTokenService
    rights: RightService
    roles: RoleService
    users: UserService
    api_tokens: ApiTokenService
    authentication: AuthenticationService
    audit: AuditLog


def build_services(
    cfg,
    current_principal: Callable[[], Optional[UserDetails]] = lambda: None,
    today: Callable[[], datetime.date] = datetime.date.today,
) -> ServiceRegistry:
    """Create repositories and services from an ``AppConfig``.

    Args:
        cfg: Application configuration
        current_principal: Returns the caller of the current request (auditor and
            API token owner)
        today: Current date provider for API token expiry
    """
    def auditor() -> Optional[str]:
        principal = current_principal()
        return principal.username if principal is not None else None

    user_identity = UuidIdentity() if cfg.user_id_strategy == "uuid" else SequenceIdentity()

    right_repository = InMemoryRepository(NaturalIdentity("authority"))
    role_repository = InMemoryRepository(NaturalIdentity("name"))
    user_repository = InMemoryRepository(user_identity, auditor=auditor)
    api_token_repository = InMemoryRepository(UuidIdentity(), auditor=auditor)

    tokens = JwtTokenService(cfg.secret_key, cfg.jwt_issuer, cfg.access_token_expiration)
    rights = RightService(right_repository)
    roles = RoleService(role_repository, right_repository, cfg.default_role)
    users = UserService(user_repository, roles, tokens, cfg.max_failed_login_attempts)
    api_tokens = ApiTokenService(
        api_token_repository,
        users,
        rights,
        tokens,
        current_principal,
        cfg.default_api_token_expiration,
        today,
    )

    # Back references resolved after construction
    rights.role_service = roles
    roles.user_service = users
    users.api_token_service = api_tokens

    authentication = AuthenticationService(
        users,
        roles,
        api_tokens,
        tokens,
        OAuth2Options(
            allow_signup=cfg.oauth2_allow_signup,
            update_role=cfg.oauth2_update_role,
            roles_claim=cfg.oauth2_roles_claim or None,
            role_mappings=dict(cfg.oauth2_role_mappings),
        ),
    )
    audit = AuditLog(Path(cfg.audit_log_dir), cfg.audit_log_signing_key)
    return ServiceRegistry(tokens, rights, roles, users, api_tokens, authentication, audit)
