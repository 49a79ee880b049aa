"""Field-level visibility and JSON serialization of representations.

Representation dataclasses mark gated fields with ``allow_for``:

    phone: Optional[str] = field(default=None, metadata=allow_for(roles=["ADMIN"], rights=["USER_READ"]))

Assemblers always populate every field. Gating happens only here, when a
representation is serialized for a specific caller:

    AccessAwareFilter(principal).serialize(representation)
"""
from __future__ import annotations
import dataclasses
import datetime
import functools
import json
import uuid
from enum import Enum
from typing import Any, Iterable, Optional

from .repository import Page

ALLOW_FOR = "allow_for"


@dataclasses.dataclass(frozen=True)
class AllowFor:
    """Visibility predicate of a single field."""
    roles: frozenset[str] = frozenset()
    rights: frozenset[str] = frozenset()
    owner: bool = True

    def permits(self, principal, obj) -> bool:
        if any(principal.has_role(role) for role in self.roles):
            return True
        if any(principal.has_right(right) for right in self.rights):
            return True
        if self.owner:
            is_owned_by = getattr(obj, "is_owned_by", None)
            return bool(is_owned_by and is_owned_by(principal))
        return False


def allow_for(roles: Iterable[str] = (), rights: Iterable[str] = (), owner: bool = True) -> dict:
    """Field metadata restricting a representation field to matching callers."""
    return {ALLOW_FOR: AllowFor(frozenset(roles), frozenset(rights), owner)}


def camel_case(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in tail)


@functools.lru_cache(maxsize=None)
def visibility_table(cls) -> tuple[tuple[str, str, Optional[AllowFor]], ...]:
    """(attribute, json key, predicate or None) for every field of ``cls``."""
    return tuple(
        (f.name, camel_case(f.name), f.metadata.get(ALLOW_FOR))
        for f in dataclasses.fields(cls)
    )


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


class AccessAwareFilter:
    """Serializes representations, dropping fields the principal may not see.

    Args:
        principal: ``UserDetails`` of the caller, or None for internal use
            (audit log, anonymous rendering) where nothing is filtered
    """

    def __init__(self, principal=None):
        self.principal = principal

    def is_visible(self, obj, predicate: Optional[AllowFor]) -> bool:
        if predicate is None or self.principal is None:
            return True
        return predicate.permits(self.principal, obj)

    def serialize(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, (datetime.date, datetime.datetime)):
            return value.isoformat()
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, Page):
            return {
                "content": [self.serialize(item) for item in value.content],
                "number": value.number,
                "size": value.size,
                "totalElements": value.total_elements,
                "totalPages": value.total_pages,
            }
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return self._serialize_dataclass(value)
        if isinstance(value, dict):
            return {str(k): self.serialize(v) for k, v in value.items()}
        if isinstance(value, (set, frozenset)):
            return sorted((self.serialize(item) for item in value), key=_canonical)
        if isinstance(value, (list, tuple)):
            return [self.serialize(item) for item in value]
        raise TypeError(f"Cannot serialize value of type {type(value).__name__}")

    def _serialize_dataclass(self, obj) -> dict[str, Any]:
        result = {}
        for attribute, key, predicate in visibility_table(type(obj)):
            if not self.is_visible(obj, predicate):
                continue
            result[key] = self.serialize(getattr(obj, attribute))
        return result
