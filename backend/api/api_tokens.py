"""API token routes (/v1/api-tokens).

Callers see their own tokens only; holders of ``API_TOKEN_ADMIN`` see all.
The signed token is returned once, in the creation response.
"""
from __future__ import annotations

from flask import Blueprint, g

from backend.core.dto import ApiTokenDto, parse_patch
from .decorators import get_services, require_token
from .rest import audit, json_body, no_content, page_request_from_args, parse_id, render

bp = Blueprint("api_tokens", __name__)

RESOURCE_TYPE = "ApiToken"
TOKEN_RIGHTS = ["API_TOKEN", "API_TOKEN_ADMIN"]
SORTABLE = ("description", "valid_until", "status", "linked_user", "created_at")


@bp.route("", methods=["GET"])
@require_token(rights=TOKEN_RIGHTS)
def list_api_tokens():
    api_tokens = get_services().api_tokens
    return render(api_tokens.list_for(g.principal, page_request_from_args(SORTABLE)))


@bp.route("/<token_id>", methods=["GET"])
@require_token(rights=TOKEN_RIGHTS)
def get_api_token(token_id: str):
    api_tokens = get_services().api_tokens
    entity_id = parse_id(api_tokens, token_id)
    return render(api_tokens.for_token(g.principal, entity_id).get(entity_id))


@bp.route("", methods=["POST"])
@require_token(rights=["API_TOKEN"])
def create_api_token():
    api_tokens = get_services().api_tokens
    token = api_tokens.create(ApiTokenDto.from_payload(json_body()))
    representation = api_tokens.to_representation(token)
    audit("create", RESOURCE_TYPE, token.id, representation)
    response = render(representation, 201)
    response.headers["Location"] = f"/v1/api-tokens/{token.id}"
    return response


@bp.route("/<token_id>", methods=["PUT"])
@require_token(rights=TOKEN_RIGHTS)
def update_api_token(token_id: str):
    """Always rejected with 405; tokens can only be revoked or deleted."""
    api_tokens = get_services().api_tokens
    entity_id = parse_id(api_tokens, token_id)
    api_tokens.for_token(g.principal, entity_id).update(entity_id, None)
    return no_content()


@bp.route("/<token_id>", methods=["PATCH"])
@require_token(rights=TOKEN_RIGHTS)
def patch_api_token(token_id: str):
    """Revoke a token: body must be exactly ``{"status": "REVOKED"}``."""
    api_tokens = get_services().api_tokens
    entity_id = parse_id(api_tokens, token_id)
    token = api_tokens.for_token(g.principal, entity_id).patch(entity_id, parse_patch(json_body()))
    representation = api_tokens.to_representation(token)
    audit("revoke", RESOURCE_TYPE, token.id, representation)
    return render(representation)


@bp.route("/<token_id>", methods=["DELETE"])
@require_token(rights=TOKEN_RIGHTS)
def delete_api_token(token_id: str):
    api_tokens = get_services().api_tokens
    entity_id = parse_id(api_tokens, token_id)
    api_tokens.for_token(g.principal, entity_id).delete_by_id(entity_id)
    audit("delete", RESOURCE_TYPE, entity_id)
    return no_content()
