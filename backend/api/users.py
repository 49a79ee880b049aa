"""User routes (/v1/users) including the caller's own profile (/v1/users/me)."""
from __future__ import annotations
import logging

from flask import Blueprint, g, jsonify

from backend.core.dto import PasswordUpdateRequest, UserDto, parse_patch
from backend.core.exceptions import ResourceNotFoundError
from .decorators import get_services, require_token
from .rest import audit, json_body, no_content, page_request_from_args, parse_id, render

logger = logging.getLogger(__name__)

bp = Blueprint("users", __name__)

RESOURCE_TYPE = "User"
SORTABLE = ("id", "email", "first_name", "last_name", "locale", "enabled", "created_at", "updated_at")


# ─────────────────────────────────────────────────────────────────────────────
# Administration
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("", methods=["GET"])
@require_token(rights=["USER_READ"])
def list_users():
    """Paged list of users (``page``, ``size``, ``sort=lastName,desc``)."""
    users = get_services().users
    return render(users.list(page_request_from_args(SORTABLE)))


@bp.route("/<user_id>", methods=["GET"])
@require_token(rights=["USER_READ"])
def get_user(user_id: str):
    users = get_services().users
    return render(users.get(parse_id(users, user_id)))


@bp.route("", methods=["POST"])
@require_token(rights=["USER_CREATE"])
def create_user():
    users = get_services().users
    user = users.create(UserDto.from_payload(json_body()))
    representation = users.to_representation(user)
    audit("create", RESOURCE_TYPE, user.id, representation)
    response = render(representation, 201)
    response.headers["Location"] = f"/v1/users/{user.id}"
    return response


@bp.route("/<user_id>", methods=["PUT"])
@require_token(rights=["USER_UPDATE"])
def update_user(user_id: str):
    users = get_services().users
    user = users.update(parse_id(users, user_id), UserDto.from_payload(json_body()))
    representation = users.to_representation(user)
    audit("update", RESOURCE_TYPE, user.id, representation)
    return render(representation)


@bp.route("/<user_id>", methods=["PATCH"])
@require_token(rights=["USER_UPDATE"])
def patch_user(user_id: str):
    users = get_services().users
    user = users.patch(parse_id(users, user_id), parse_patch(json_body()))
    representation = users.to_representation(user)
    audit("patch", RESOURCE_TYPE, user.id, representation)
    return render(representation)


@bp.route("/<user_id>", methods=["DELETE"])
@require_token(rights=["USER_DELETE"])
def delete_user(user_id: str):
    users = get_services().users
    entity_id = parse_id(users, user_id)
    users.delete_by_id(entity_id)
    audit("delete", RESOURCE_TYPE, entity_id)
    return no_content()


@bp.route("/<user_id>/terminate", methods=["POST"])
@require_token(rights=["USER_UPDATE"])
def terminate_user(user_id: str):
    """End all sessions of a user; the account itself stays unchanged."""
    users = get_services().users
    user = users.terminate(parse_id(users, user_id))
    audit("terminate", RESOURCE_TYPE, user.id)
    return no_content()


@bp.route("/<user_id>/password-reset-token", methods=["POST"])
@require_token(rights=["USER_UPDATE"])
def create_password_reset_token(user_id: str):
    """Issue a reset token to hand over to the user; redeemed via POST /v1/set-password."""
    users = get_services().users
    user = users.get_by_id(parse_id(users, user_id))
    token = users.create_password_reset_token(user)
    audit("password_reset", RESOURCE_TYPE, user.id)
    return jsonify({"token": token})


# ─────────────────────────────────────────────────────────────────────────────
# Own profile
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/me", methods=["GET"])
@require_token()
def get_me():
    users = get_services().users
    return render(users.to_representation(users.get_user_from_principal(g.principal)))


@bp.route("/me", methods=["PATCH"])
@require_token()
def patch_me():
    """Update own profile; only names, phone numbers and locale are taken over."""
    users = get_services().users
    user = users.self_update(users.get_user_from_principal(g.principal), parse_patch(json_body()))
    representation = users.to_representation(user)
    audit("patch", RESOURCE_TYPE, user.id, representation)
    return render(representation)


@bp.route("/me", methods=["PUT"])
@require_token()
def update_me():
    """Replace own profile from a full user payload; only profile fields are taken over."""
    users = get_services().users
    user = users.self_replace(users.get_user_from_principal(g.principal), UserDto.from_payload(json_body()))
    representation = users.to_representation(user)
    audit("update", RESOURCE_TYPE, user.id, representation)
    return render(representation)


@bp.route("/me/role", methods=["GET"])
@require_token()
def get_my_roles():
    services = get_services()
    user = services.users.get_user_from_principal(g.principal)
    return render([services.roles.to_representation(role) for role in sorted(user.roles, key=lambda r: r.name)])


@bp.route("/me/role/rights", methods=["GET"])
@require_token()
def get_my_rights():
    """Rights of all roles of the caller."""
    services = get_services()
    user = services.users.get_user_from_principal(g.principal)
    rights = {right for role in user.roles for right in role.rights}
    return render([services.rights.to_representation(right) for right in sorted(rights, key=lambda r: r.authority)])


@bp.route("/me/password", methods=["PUT"])
@require_token()
def update_my_password():
    """Change own password; all sessions of the caller are invalidated."""
    users = get_services().users
    user = users.update_password(
        users.get_user_from_principal(g.principal),
        PasswordUpdateRequest.from_payload(json_body()),
    )
    audit("update", RESOURCE_TYPE, user.id)
    return no_content()


@bp.route("/me/sessions", methods=["GET"])
@require_token()
def list_my_sessions():
    services = get_services()
    return render(services.tokens.get_tokens(g.principal.username))


@bp.route("/me/sessions/<token_id>", methods=["DELETE"])
@require_token()
def delete_my_session(token_id: str):
    services = get_services()
    if not services.tokens.delete_token(g.principal.username, token_id):
        raise ResourceNotFoundError("SessionToken", token_id)
    logger.info(f"{g.principal.username} ended session {token_id}")
    return no_content()
