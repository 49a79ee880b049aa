"""Shared helpers for the resource blueprints: paging, id parsing, rendering, auditing."""
from __future__ import annotations
from typing import Any, Iterable, Optional

from flask import g, jsonify, request

from backend.core.access import AccessAwareFilter
from backend.core.audit import AuditAction, current_operator
from backend.core.dto import snake_case
from backend.core.exceptions import ValidationError
from backend.core.repository import DEFAULT_PAGE_SIZE, PageRequest
from backend.core.services import EntityService
from .decorators import current_principal, get_services


def page_request_from_args(sortable: Iterable[str] = ()) -> PageRequest:
    """Build a PageRequest from ``?page=0&size=20&sort=lastName,desc``.

    ``sort`` may be repeated; only attributes listed in ``sortable`` are accepted.

    Raises:
        ValidationError: Malformed paging or sort parameters
    """
    allowed = set(sortable)
    try:
        page = int(request.args.get("page", 0))
        size = int(request.args.get("size", DEFAULT_PAGE_SIZE))
    except ValueError:
        raise ValidationError("page and size must be integers", field="page") from None

    orders = []
    for raw in request.args.getlist("sort"):
        name, _, direction = raw.partition(",")
        attribute = snake_case(name.strip())
        if attribute not in allowed:
            raise ValidationError(f"Cannot sort by '{name}'", field="sort")
        orders.append((attribute, (direction.strip() or "asc").lower()))

    try:
        return PageRequest(page=page, size=size, sort=tuple(orders))
    except ValueError as e:
        raise ValidationError(str(e), field="page") from e


def parse_id(service: EntityService, raw: str) -> Any:
    """Coerce a path segment to the service's identity type."""
    try:
        return service.repository.coerce_id(raw)
    except ValueError as e:
        raise ValidationError(str(e), field="id") from e


def json_body() -> Any:
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be valid JSON")
    return payload


def render(value: Any, status: int = 200):
    """Serialize ``value`` for the current principal and return a JSON response."""
    response = jsonify(AccessAwareFilter(current_principal()).serialize(value))
    response.status_code = status
    return response


def no_content():
    return "", 204


def audit(action: AuditAction, resource_type: str, resource_id: Any, representation: Optional[Any] = None) -> None:
    """Record an audit event for the current caller; failures are only logged."""
    get_services().audit.safe_record(
        action,
        resource_type,
        resource_id,
        operator=current_operator(g.get("principal")),
        representation=representation,
    )
