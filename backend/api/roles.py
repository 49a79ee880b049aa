"""Role routes (/v1/roles). Roles are addressed by their upper-case name."""
from __future__ import annotations

from flask import Blueprint

from backend.core.dto import RoleDto, parse_patch
from .decorators import get_services, require_token
from .rest import audit, json_body, no_content, page_request_from_args, render

bp = Blueprint("roles", __name__)

RESOURCE_TYPE = "Role"
SORTABLE = ("name", "description", "protected")


@bp.route("", methods=["GET"])
@require_token(rights=["ROLE_READ"])
def list_roles():
    return render(get_services().roles.list(page_request_from_args(SORTABLE)))


@bp.route("/<name>", methods=["GET"])
@require_token(rights=["ROLE_READ"])
def get_role(name: str):
    return render(get_services().roles.get(name.upper()))


@bp.route("", methods=["POST"])
@require_token(rights=["ROLE_CREATE"])
def create_role():
    roles = get_services().roles
    role = roles.create(RoleDto.from_payload(json_body()))
    representation = roles.to_representation(role)
    audit("create", RESOURCE_TYPE, role.name, representation)
    response = render(representation, 201)
    response.headers["Location"] = f"/v1/roles/{role.name}"
    return response


@bp.route("/<name>", methods=["PUT"])
@require_token(rights=["ROLE_UPDATE"])
def update_role(name: str):
    roles = get_services().roles
    role = roles.update(name.upper(), RoleDto.from_payload(json_body()))
    representation = roles.to_representation(role)
    audit("update", RESOURCE_TYPE, role.name, representation)
    return render(representation)


@bp.route("/<name>", methods=["PATCH"])
@require_token(rights=["ROLE_UPDATE"])
def patch_role(name: str):
    roles = get_services().roles
    fields = parse_patch(json_body())
    if isinstance(fields.get("name"), str):
        fields["name"] = fields["name"].upper()
    role = roles.patch(name.upper(), fields)
    representation = roles.to_representation(role)
    audit("patch", RESOURCE_TYPE, role.name, representation)
    return render(representation)


@bp.route("/<name>", methods=["DELETE"])
@require_token(rights=["ROLE_DELETE"])
def delete_role(name: str):
    get_services().roles.delete_by_id(name.upper())
    audit("delete", RESOURCE_TYPE, name.upper())
    return no_content()
