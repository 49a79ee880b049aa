"""External read models.

Representations are built by the assemblers in ``backend.core.assemblers``
and rendered by ``backend.core.access.AccessAwareFilter``. Fields carrying
``allow_for`` metadata are only rendered for matching callers.
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from typing import Any, Optional

from .access import allow_for
from .models import ApiTokenStatus, Right, Role

ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class BasicRepresentation:
    """Minimal ``(id, name)`` reference to another resource."""
    id: Any
    name: str

    @classmethod
    def from_entity(cls, entity) -> Optional["BasicRepresentation"]:
        """Build from any object with ``id`` and ``title``; None if either is missing."""
        if entity is None:
            return None
        entity_id = getattr(entity, "id", None)
        name = getattr(entity, "title", None)
        if entity_id is None or name is None:
            return None
        return cls(entity_id, name)


@dataclass
class UserRepresentation:
    id: Any
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = field(
        default=None, metadata=allow_for(roles=[ADMIN_ROLE], rights=["USER_READ"])
    )
    mobile: Optional[str] = field(
        default=None, metadata=allow_for(roles=[ADMIN_ROLE], rights=["USER_READ"])
    )
    email: Optional[str] = None
    locale: Optional[str] = None
    roles: frozenset[Role] = frozenset()
    enabled: bool = True
    login_disabled: bool = False
    source: Optional[str] = None

    def is_owned_by(self, principal) -> bool:
        if principal is None:
            return False
        # Principal ids rebuilt from token claims are strings for UUID identities
        return str(principal.id) == str(self.id) or (
            self.email is not None and principal.username == self.email
        )


@dataclass
class RoleRepresentation:
    name: str
    description: str = ""
    protected: bool = False
    editable: bool = True
    rights: frozenset[Right] = frozenset()


@dataclass
class RightRepresentation:
    authority: str
    description: str = ""


@dataclass
class ApiTokenRepresentation:
    id: Any
    linked_user: Optional[BasicRepresentation] = None
    description: Optional[str] = None
    valid_until: Optional[datetime.date] = None
    status: ApiTokenStatus = ApiTokenStatus.ACTIVE
    rights: frozenset[Right] = frozenset()
    # Signed token; present only in the response to creation
    token: Optional[str] = field(default=None, metadata=allow_for())
    created_at: Optional[datetime.datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None
    updated_by: Optional[str] = None

    def is_owned_by(self, principal) -> bool:
        if principal is None or self.linked_user is None:
            return False
        return str(principal.id) == str(self.linked_user.id)
