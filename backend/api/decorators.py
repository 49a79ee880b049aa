"""
Flask decorators for bearer token authentication and authorization.

Tokens are HS256 JWTs issued by this service (ACCESS tokens from login,
API tokens from /v1/api-tokens). The resolved principal is stored on
``flask.g`` for the route, the representation filter and the auditor.
"""
from __future__ import annotations
import logging
from functools import wraps
from typing import Iterable, Optional

from flask import current_app, g, request

from backend.core.exceptions import TokenValidationError
from backend.core.models import UserDetails
from backend.core.registry import ServiceRegistry
from backend.core.tokens import token_fingerprint
from .errors import error_response

logger = logging.getLogger(__name__)


def get_services() -> ServiceRegistry:
    return current_app.config["SERVICES"]


def current_principal() -> Optional[UserDetails]:
    """Principal of the current request, or None outside ``@require_token``."""
    return g.get("principal")


def _extract_bearer() -> tuple[Optional[str], Optional[str]]:
    """Returns (token, error_message)."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        return None, "Authorization header required. Use 'Authorization: Bearer <token>'"
    if not auth_header.startswith("Bearer "):
        return None, "Invalid Authorization header format. Expected 'Bearer <token>'"
    token = auth_header[7:].strip()
    if not token:
        return None, "Bearer token is empty"
    return token, None


def require_token(rights: Optional[Iterable[str]] = None, roles: Optional[Iterable[str]] = None):
    """
    Decorator requiring a valid bearer token.

    Args:
        rights: Caller needs at least one of these rights (if given)
        roles: Caller needs at least one of these roles (if given)

    Returns:
        Decorated function that resolves ``g.principal`` before execution

    Raises:
        401 Unauthorized: Missing, invalid, expired or invalidated token
        403 Forbidden: Insufficient rights or roles

    Example:
        @bp.route("", methods=["POST"])
        @require_token(rights=["USER_CREATE"])
        def create_user():
            ...
    """
    required_rights = list(rights or [])
    required_roles = list(roles or [])

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token, problem = _extract_bearer()
            if problem:
                logger.warning(f"Request to {request.path} rejected: {problem}")
                return error_response(401, problem)

            try:
                principal = get_services().authentication.authenticate_bearer(token)
            except TokenValidationError as e:
                logger.warning(f"Token {token_fingerprint(token)} rejected: {e}")
                return error_response(401, str(e))

            if required_rights and not any(principal.has_right(r) for r in required_rights):
                logger.warning(
                    f"{principal.username} lacks required rights for {request.path}. "
                    f"Required: {required_rights}"
                )
                return error_response(403, f"Insufficient rights. Required: {', '.join(required_rights)}")

            if required_roles and not any(principal.has_role(r) for r in required_roles):
                logger.warning(f"{principal.username} lacks required roles for {request.path}")
                return error_response(403, f"Required role: {', '.join(required_roles)}")

            g.principal = principal
            g.token = token
            return fn(*args, **kwargs)

        return wrapper
    return decorator
