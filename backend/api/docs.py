"""Documentation blueprint exposing the OpenAPI description of the REST API."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from flask import Blueprint, Response, current_app, jsonify

bp = Blueprint("docs", __name__)

DEFAULT_SPEC_PATH = Path(__file__).resolve().parent / "openapi.yaml"


def _spec_path() -> Path:
    """Resolve the OpenAPI document path (overridable via OPENAPI_SPEC_PATH)."""
    override = current_app.config.get("OPENAPI_SPEC_PATH")
    if override:
        return Path(override)
    return DEFAULT_SPEC_PATH


def _load_spec() -> dict[str, Any]:
    """Load the OpenAPI document from disk (YAML)."""
    path = _spec_path()
    if not path.exists():
        raise FileNotFoundError(f"OpenAPI document not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


@bp.route("/openapi.json", methods=["GET"])
def openapi_document() -> Response:
    """Serve the OpenAPI document as JSON."""
    return jsonify(_load_spec())
