"""Persisted domain entities.

Entities are plain dataclasses. Identity assignment and audit stamping are
done by the repository (see ``backend.core.repository``); each entity type is
bound to exactly one identity strategy there.
"""
from __future__ import annotations
import copy
import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


USER_AUTH_SOURCE_LOCAL = "local"
DEFAULT_LOCALE = "de"
PLACEHOLDER_FIRST_NAME = "Unknown"
PLACEHOLDER_LAST_NAME = "Unknown"


@dataclass
class BaseModel:
    """Common identity and audit fields."""
    id: Any = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    def clone(self):
        """Shallow copy; nested role/right sets are copied as well."""
        duplicate = copy.copy(self)
        for name, value in vars(self).items():
            if isinstance(value, set):
                setattr(duplicate, name, set(value))
        return duplicate


@dataclass(frozen=True)
class Right:
    """Single permission, identified by its authority string."""
    authority: str
    description: str = ""

    @property
    def id(self) -> str:
        return self.authority


@dataclass(eq=False)
class Role:
    """Named bundle of rights. Protected roles cannot be edited or deleted."""
    name: str
    description: str = ""
    protected: bool = False
    rights: set[Right] = field(default_factory=set)

    @property
    def id(self) -> str:
        return self.name

    @property
    def editable(self) -> bool:
        return not self.protected

    @property
    def authorities(self) -> set[str]:
        return {right.authority for right in self.rights}

    def right_from_role(self) -> Right:
        return Right(self.name, self.description)

    def clone(self) -> "Role":
        return Role(self.name, self.description, self.protected, set(self.rights))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return (
            self.name == other.name
            and self.description == other.description
            and self.protected == other.protected
            and self.rights == other.rights
        )

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return f"Role(name={self.name!r}, protected={self.protected})"


@dataclass
class User(BaseModel):
    """Application user. The email address doubles as username."""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    mobile: Optional[str] = None
    locale: str = DEFAULT_LOCALE
    roles: set[Role] = field(default_factory=set)
    enabled: bool = True
    login_disabled: bool = False
    password: Optional[str] = field(default=None, repr=False)
    password_reset_token: Optional[str] = field(default=None, repr=False)
    nonce: Optional[str] = field(default=None, repr=False)
    failed_login_attempts: int = 0
    source: Optional[str] = None

    @property
    def username(self) -> str:
        return self.email

    @property
    def title(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def auth_source(self) -> str:
        return self.source or USER_AUTH_SOURCE_LOCAL

    @property
    def has_local_authentication(self) -> bool:
        return self.auth_source == USER_AUTH_SOURCE_LOCAL

    @property
    def role_names(self) -> set[str]:
        return {role.name for role in self.roles}

    @property
    def authorities(self) -> set[str]:
        """Rights of all roles plus one pseudo-right per role name."""
        rights = set()
        for role in self.roles:
            rights |= role.authorities
            rights.add(role.name)
        return rights

    @property
    def can_login(self) -> bool:
        return self.enabled and not self.login_disabled


class ApiTokenStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


@dataclass
class ApiToken(BaseModel):
    """Long-lived token acting on behalf of ``linked_user`` with a subset of its rights."""
    linked_user: str = ""
    description: Optional[str] = None
    valid_until: Optional[datetime.date] = None
    status: ApiTokenStatus = ApiTokenStatus.ACTIVE
    rights: set[Right] = field(default_factory=set)
    # Only populated on the response to creation; never persisted
    token: Optional[str] = field(default=None, repr=False)

    @property
    def username(self) -> str:
        return f"{self.linked_user}-api-token-{self.id}"

    @property
    def title(self) -> str:
        return self.username

    @property
    def authorities(self) -> set[str]:
        return {right.authority for right in self.rights}

    def is_expired(self, today: Optional[datetime.date] = None) -> bool:
        today = today or datetime.date.today()
        return self.valid_until is not None and self.valid_until <= today


@dataclass(frozen=True)
class UserDetails:
    """Authenticated principal as carried by a bearer token."""
    id: Any
    username: str
    first_name: str = ""
    last_name: str = ""
    roles: frozenset[str] = frozenset()
    rights: frozenset[str] = frozenset()
    additional_claims: dict = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_user(cls, user: User) -> "UserDetails":
        return cls(
            id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            roles=frozenset(user.role_names),
            rights=frozenset(user.authorities),
        )

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_right(self, right: str) -> bool:
        return right in self.rights
