"""Entity → representation assemblers.

Each assembler maps one entity instance to one new representation instance.
Assemblers never filter fields and never mutate their input; see
``backend.core.access`` for caller-dependent field visibility.

Usage:
    assembler = UserAssembler()
    representation = assembler.to_model(user)
    page_of_representations = assembler.to_page(page_of_users)
"""
from __future__ import annotations
import abc
from typing import Generic, Iterable, TypeVar

from .models import ApiToken, Right, Role, User
from .repository import Page
from .representations import (
    ApiTokenRepresentation,
    BasicRepresentation,
    RightRepresentation,
    RoleRepresentation,
    UserRepresentation,
)

M = TypeVar("M")
R = TypeVar("R")


class RepresentationAssembler(abc.ABC, Generic[M, R]):
    """Maps entities of type ``M`` to representations of type ``R``."""

    @abc.abstractmethod
    def to_model(self, entity: M) -> R:
        """Assemble the full, unfiltered representation of ``entity``.

        Raises:
            ValueError: If entity is None
            ResourceNotFoundError: If a foreign reference cannot be resolved
        """

    def to_models(self, entities: Iterable[M]) -> list[R]:
        return [self.to_model(entity) for entity in entities]

    def to_page(self, page: Page[M]) -> Page[R]:
        return page.map(self.to_model)

    @staticmethod
    def _require(entity):
        if entity is None:
            raise ValueError("Cannot assemble a representation of None")
        return entity


class UserAssembler(RepresentationAssembler[User, UserRepresentation]):
    """Exposes profile fields, roles and login flags; never the password or nonce."""

    def to_model(self, entity: User) -> UserRepresentation:
        user = self._require(entity)
        return UserRepresentation(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            mobile=user.mobile,
            email=user.email,
            locale=user.locale,
            roles=frozenset(user.roles),
            enabled=user.enabled,
            login_disabled=user.login_disabled,
            source=user.source,
        )


class RoleAssembler(RepresentationAssembler[Role, RoleRepresentation]):

    def to_model(self, entity: Role) -> RoleRepresentation:
        role = self._require(entity)
        return RoleRepresentation(
            name=role.name,
            description=role.description,
            protected=role.protected,
            editable=role.editable,
            rights=frozenset(role.rights),
        )


class RightAssembler(RepresentationAssembler[Right, RightRepresentation]):

    def to_model(self, entity: Right) -> RightRepresentation:
        right = self._require(entity)
        return RightRepresentation(authority=right.authority, description=right.description)


class ApiTokenAssembler(RepresentationAssembler[ApiToken, ApiTokenRepresentation]):
    """Resolves the linked username into a ``BasicRepresentation`` of its user.

    Args:
        user_lookup: Object offering ``load_user_by_username(username)``,
            usually the ``UserService``
    """

    def __init__(self, user_lookup):
        self.user_lookup = user_lookup

    def to_model(self, entity: ApiToken) -> ApiTokenRepresentation:
        token = self._require(entity)
        # Lookup first so a missing user never yields a partial representation
        linked_user = BasicRepresentation.from_entity(
            self.user_lookup.load_user_by_username(token.linked_user)
        )
        return ApiTokenRepresentation(
            id=token.id,
            linked_user=linked_user,
            description=token.description,
            valid_until=token.valid_until,
            status=token.status,
            rights=frozenset(token.rights),
            token=token.token,
            created_at=token.created_at,
            created_by=token.created_by,
            updated_at=token.updated_at,
            updated_by=token.updated_by,
        )
