"""Credential routes that work without a session (/v1/set-password)."""
from __future__ import annotations

from flask import Blueprint

from backend.core.dto import PasswordUpdateRequest
from .decorators import get_services
from .rest import json_body, no_content

bp = Blueprint("credentials", __name__)


@bp.route("/set-password", methods=["POST"])
def set_password():
    """Redeem a password reset token.

    Body: ``{"password": "<new password>", "verification": "<reset token>"}``
    """
    services = get_services()
    request_data = PasswordUpdateRequest.from_payload(json_body())
    user = services.users.reset_password_by_token(request_data.verification, request_data.password)
    services.audit.safe_record("password_reset", "User", user.id, operator=user.username)
    return no_content()
