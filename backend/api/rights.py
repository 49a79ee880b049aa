"""Right routes (/v1/rights). Rights are fixed; only descriptions can change."""
from __future__ import annotations

from flask import Blueprint

from backend.core.dto import RightDto
from backend.core.exceptions import ValidationError
from .decorators import get_services, require_token
from .rest import audit, json_body, page_request_from_args, render

bp = Blueprint("rights", __name__)

SORTABLE = ("authority", "description")


@bp.route("", methods=["GET"])
@require_token(rights=["RIGHT_READ"])
def list_rights():
    return render(get_services().rights.list(page_request_from_args(SORTABLE)))


@bp.route("/<authority>", methods=["GET"])
@require_token(rights=["RIGHT_READ"])
def get_right(authority: str):
    return render(get_services().rights.get(authority.upper()))


@bp.route("/<authority>", methods=["PUT"])
@require_token(rights=["RIGHT_UPDATE"])
def update_right(authority: str):
    """Replace the description of a right; the authority itself is immutable."""
    payload = json_body()
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    payload = {"authority": authority, **payload}
    rights = get_services().rights
    right = rights.update(authority.upper(), RightDto.from_payload(payload))
    representation = rights.to_representation(right)
    audit("update", "Right", right.authority, representation)
    return render(representation)
