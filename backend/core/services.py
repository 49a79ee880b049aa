"""Entity services: generic CRUD plus the assembling binder and concrete services.

``EntityService`` implements create/read/update/patch/delete once, for any
identity type, with pre/post-processing hooks for subclasses.
``AssemblingEntityService`` adds ``get``/``list`` returning representations
built by the service's own assembler.

Usage:
    users = UserService(InMemoryRepository(SequenceIdentity()), role_service, token_service)
    users.create(UserDto(email="ada@example.com", first_name="Ada", last_name="Lovelace"))
    page = users.list(PageRequest(page=0, size=20))
"""
from __future__ import annotations
import copy
import dataclasses
import datetime
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from werkzeug.security import check_password_hash, generate_password_hash

from .assemblers import ApiTokenAssembler, RepresentationAssembler, RightAssembler, RoleAssembler, UserAssembler
from .dto import (
    ROLE_PATCH_CHECKS,
    USER_PATCH_CHECKS,
    ApiTokenDto,
    PasswordUpdateRequest,
    RightDto,
    RoleDto,
    UserDto,
    check_patch,
)
from .exceptions import (
    AuthenticationError,
    DuplicateResourceError,
    NotAllowedError,
    ResourceNotFoundError,
    ResourceUpdateError,
    UnsupportedOperationError,
    UserNotFoundError,
    ValidationError,
)
from .models import (
    DEFAULT_LOCALE,
    PLACEHOLDER_FIRST_NAME,
    PLACEHOLDER_LAST_NAME,
    ApiToken,
    ApiTokenStatus,
    BaseModel,
    Right,
    Role,
    User,
    UserDetails,
)
from .repository import InMemoryRepository, Page, PageRequest
from .tokens import JwtTokenService, SessionTokenType
from . import validators

logger = logging.getLogger(__name__)

M = TypeVar("M")
ID = TypeVar("ID")
IN = TypeVar("IN")
R = TypeVar("R")

API_TOKEN_ADMIN_RIGHT = "API_TOKEN_ADMIN"


# ─────────────────────────────────────────────────────────────────────────────
# Generic CRUD
# ─────────────────────────────────────────────────────────────────────────────

class EntityService(Generic[M, ID, IN]):
    """CRUD over one repository.

    Subclasses implement ``convert_dto_to_entity`` and may override the
    ``_pre_*``/``_post_*`` hooks. Errors are never handled here.
    """

    resource_type = "Entity"
    # Attributes PATCH silently ignores
    ignored_patch_fields = frozenset({"created_by", "created_at"})
    # Attributes PATCH rejects
    read_only_fields = frozenset()

    def __init__(self, repository: InMemoryRepository):
        self.repository = repository

    # Queries

    def count_all(self) -> int:
        return self.repository.count()

    def count_filtered(self, predicate: Callable[[M], bool]) -> int:
        return self.repository.count(predicate)

    def exists_by_id(self, entity_id: ID) -> bool:
        return self.repository.exists_by_id(entity_id)

    def exists_filtered(self, predicate: Callable[[M], bool]) -> bool:
        return self.repository.find_one(predicate) is not None

    def get_all(self, page_request: Optional[PageRequest] = None):
        """All entities as a list, or one ``Page`` of them if ``page_request`` is given."""
        return self.get_all_filtered(None, page_request)

    def get_all_filtered(self, predicate: Optional[Callable[[M], bool]], page_request: Optional[PageRequest] = None):
        result = self.repository.find_all_matching(predicate, page_request)
        if isinstance(result, Page):
            return result.map(self._post_process)
        return [self._post_process(entity) for entity in result]

    def get_one(self, predicate: Callable[[M], bool]) -> Optional[M]:
        entity = self.repository.find_one(predicate)
        return self._post_process(entity) if entity is not None else None

    def get_by_id(self, entity_id: ID) -> M:
        """Load one entity.

        Raises:
            ResourceNotFoundError: If no entity has this id
        """
        entity = self.repository.find_by_id(entity_id)
        if entity is None:
            raise ResourceNotFoundError(self.resource_type, entity_id)
        return self._post_process(entity)

    def test_access(self, predicate: Callable[[M], bool]) -> "EntityService[M, ID, IN]":
        """Return self if any entity satisfies ``predicate``.

        Used to scope a following operation to entities the caller may touch:
            service.test_access(lambda t: t.linked_user == username).delete_by_id(token_id)

        Raises:
            ResourceNotFoundError: If nothing matches
        """
        if not self.exists_filtered(predicate):
            raise ResourceNotFoundError(self.resource_type)
        return self

    # Commands

    def create(self, dto: IN) -> M:
        entity = self._pre_create(dto)
        saved = self.repository.save(entity)
        return self._post_create(saved)

    def update(self, entity_id: ID, dto: IN) -> M:
        """Replace an entity.

        Raises:
            ResourceUpdateError: If the payload id does not match ``entity_id``
            ResourceNotFoundError: If the entity does not exist
        """
        entity = self._pre_update(entity_id, dto)
        saved = self.repository.save(entity)
        return self._post_update(saved)

    def patch(self, entity_id: ID, fields: Dict[str, Any]) -> M:
        """Apply attribute updates to a copy of the entity and save it.

        Raises:
            ResourceNotFoundError: If the entity does not exist
            ResourceUpdateError: If a field does not exist or is read-only
        """
        entity = self._pre_patch(entity_id, dict(fields))
        saved = self.repository.save(entity)
        return self._post_patch(saved)

    def delete_by_id(self, entity_id: ID) -> None:
        self._pre_delete(entity_id)
        self.repository.delete_by_id(entity_id)
        self._post_delete(entity_id)

    # Hooks

    def convert_dto_to_entity(self, dto: IN) -> M:
        raise NotImplementedError

    def _post_process(self, entity: M) -> M:
        return entity

    def _pre_create(self, dto: IN) -> M:
        return self.convert_dto_to_entity(dto)

    def _post_create(self, saved: M) -> M:
        return self._post_process(saved)

    def _pre_update(self, entity_id: ID, dto: IN) -> M:
        entity = self.convert_dto_to_entity(dto)
        if self._identity_of(entity) != entity_id:
            raise ResourceUpdateError("ID needs to match entity ID", self.resource_type, entity_id)
        current = self.repository.find_by_id(entity_id)
        if current is None:
            raise ResourceNotFoundError(self.resource_type, entity_id, "Entity to update is not persistent")
        if isinstance(entity, BaseModel):
            entity.created_by = current.created_by
            entity.created_at = current.created_at
        return entity

    def _post_update(self, saved: M) -> M:
        return self._post_process(saved)

    def _pre_patch(self, entity_id: ID, fields: Dict[str, Any]) -> M:
        current = self.get_by_id(entity_id)
        to_update = current.clone() if hasattr(current, "clone") else copy.copy(current)
        for name in self.ignored_patch_fields:
            fields.pop(name, None)
        for name, value in fields.items():
            self._update_field(to_update, name, value)
        return to_update

    def _post_patch(self, saved: M) -> M:
        return self._post_process(saved)

    def _pre_delete(self, entity_id: ID) -> None:
        if not self.repository.exists_by_id(entity_id):
            raise ResourceNotFoundError(self.resource_type, entity_id)

    def _post_delete(self, entity_id: ID) -> None:
        pass

    # Helpers

    def _identity_of(self, entity) -> Any:
        raw = self.repository.identity.get(entity)
        if raw is None:
            return None
        try:
            return self.repository.coerce_id(raw)
        except ValueError:
            return raw

    def _update_field(self, entity: M, name: str, value: Any) -> None:
        field_names = {f.name for f in dataclasses.fields(entity)}
        if name not in field_names:
            raise ResourceUpdateError(f"Field {name} does not exist on this entity!", self.resource_type)
        if name == "id":
            try:
                value = self.repository.coerce_id(value)
            except (TypeError, ValueError):
                value = None
            if value is None or value != getattr(entity, "id"):
                raise ResourceUpdateError(f"Field {name} can not be updated!", self.resource_type)
        if name in self.read_only_fields:
            raise ResourceUpdateError(f"Field {name} can not be updated!", self.resource_type)
        setattr(entity, name, value)


class AssemblingEntityService(EntityService[M, ID, IN], Generic[M, ID, IN, R]):
    """Entity service that also hands out representations.

    Args:
        repository: Shared repository of the entity type
        assembler: Assembler owned by this service
    """

    def __init__(self, repository: InMemoryRepository, assembler: RepresentationAssembler[M, R]):
        super().__init__(repository)
        self._assembler = assembler

    @property
    def assembler(self) -> RepresentationAssembler[M, R]:
        return self._assembler

    def get_assembler(self) -> RepresentationAssembler[M, R]:
        return self._assembler

    def get(self, entity_id: ID) -> R:
        """Representation of one entity; ResourceNotFoundError if absent."""
        return self._assembler.to_model(self.get_by_id(entity_id))

    def list(self, page_request: Optional[PageRequest] = None) -> Page[R]:
        return self.list_filtered(None, page_request)

    def list_filtered(self, predicate: Optional[Callable[[M], bool]], page_request: Optional[PageRequest] = None) -> Page[R]:
        page = self.get_all_filtered(predicate, page_request or PageRequest())
        return self._assembler.to_page(page)

    def to_representation(self, entity: M) -> R:
        return self._assembler.to_model(entity)


# ─────────────────────────────────────────────────────────────────────────────
# Rights
# ─────────────────────────────────────────────────────────────────────────────

class RightService(AssemblingEntityService[Right, str, RightDto, Any]):
    """Rights are created by the data initializer; clients only edit descriptions."""

    resource_type = "Right"

    def __init__(self, repository: InMemoryRepository, assembler: Optional[RightAssembler] = None):
        super().__init__(repository, assembler or RightAssembler())
        self.role_service: Optional["RoleService"] = None

    def find_by_authority(self, authority: str) -> Optional[Right]:
        return self.repository.find_by_id(authority)

    def convert_dto_to_entity(self, dto: RightDto) -> Right:
        return Right(dto.authority, dto.description)

    def _pre_create(self, dto: RightDto) -> Right:
        if self.repository.exists_by_id(dto.authority):
            raise DuplicateResourceError("Right already exists", self.resource_type, dto.authority)
        return super()._pre_create(dto)

    def _post_update(self, saved: Right) -> Right:
        if self.role_service is not None:
            self.role_service.replace_right(saved)
        return super()._post_update(saved)

    def _pre_patch(self, entity_id: str, fields: Dict[str, Any]) -> Right:
        current = self.get_by_id(entity_id)
        unknown = set(fields) - {"description", "authority"}
        if unknown:
            raise ResourceUpdateError(
                f"Field {sorted(unknown)[0]} does not exist on this entity!", self.resource_type, entity_id
            )
        if fields.get("authority", entity_id) != entity_id:
            raise ResourceUpdateError("Authority cannot be updated", self.resource_type, entity_id)
        return dataclasses.replace(current, description=fields.get("description", current.description))

    def _post_patch(self, saved: Right) -> Right:
        return self._post_update(saved)

    def _pre_delete(self, entity_id: str) -> None:
        super()._pre_delete(entity_id)
        if self.role_service is not None:
            self.role_service.remove_right(entity_id)


# ─────────────────────────────────────────────────────────────────────────────
# Roles
# ─────────────────────────────────────────────────────────────────────────────

class RoleService(AssemblingEntityService[Role, str, RoleDto, Any]):
    """Roles bundle rights. Protected roles cannot be changed or deleted.

    Args:
        repository: Role repository (natural identity ``name``)
        right_repository: Used to resolve right authorities
        default_role_name: Role given to users created without roles
    """

    resource_type = "Role"

    def __init__(
        self,
        repository: InMemoryRepository,
        right_repository: InMemoryRepository,
        default_role_name: Optional[str] = None,
        assembler: Optional[RoleAssembler] = None,
    ):
        super().__init__(repository, assembler or RoleAssembler())
        self.right_repository = right_repository
        self.default_role_name = default_role_name
        self.user_service: Optional["UserService"] = None

    def get_role(self, name: str) -> Optional[Role]:
        return self.repository.find_by_id(name.upper())

    def get_default_role(self) -> Optional[Role]:
        if not self.default_role_name:
            return None
        return self.get_role(self.default_role_name)

    def get_by_right(self, authority: str) -> List[Role]:
        return self.repository.find_all_matching(lambda role: authority in role.authorities)

    def resolve_rights(self, authorities: Iterable[str]) -> set[Right]:
        rights = set()
        for authority in authorities:
            right = self.right_repository.find_by_id(authority)
            if right is None:
                raise ValidationError(f"Unknown right '{authority}'", field="rights")
            rights.add(right)
        return rights

    def convert_dto_to_entity(self, dto: RoleDto) -> Role:
        return Role(
            name=dto.name,
            description=dto.description,
            protected=dto.protected,
            rights=self.resolve_rights(dto.rights),
        )

    def _pre_create(self, dto: RoleDto) -> Role:
        if self.repository.exists_by_id(dto.name):
            raise DuplicateResourceError("Role already exists", self.resource_type, dto.name)
        return super()._pre_create(dto)

    def _pre_update(self, entity_id: str, dto: RoleDto) -> Role:
        self._require_editable(entity_id)
        return super()._pre_update(entity_id, dto)

    def _post_update(self, saved: Role) -> Role:
        if self.user_service is not None:
            self.user_service.replace_role(saved)
        return super()._post_update(saved)

    def _pre_patch(self, entity_id: str, fields: Dict[str, Any]) -> Role:
        if "name" in fields and fields["name"] != entity_id:
            raise ResourceUpdateError("Name cannot be updated", self.resource_type, entity_id)
        self._require_editable(entity_id)
        check_patch(fields, ROLE_PATCH_CHECKS)
        if "rights" in fields:
            value = fields["rights"]
            if not isinstance(value, (list, tuple, set, frozenset)):
                raise ValidationError("rights must be a list", field="rights")
            fields["rights"] = {
                item if isinstance(item, Right) else next(iter(self.resolve_rights([item])))
                for item in value
            }
        return super()._pre_patch(entity_id, fields)

    def _post_patch(self, saved: Role) -> Role:
        return self._post_update(saved)

    def _pre_delete(self, entity_id: str) -> None:
        super()._pre_delete(entity_id)
        self._require_editable(entity_id)
        if self.user_service is not None and self.user_service.load_users_by_role(entity_id):
            raise NotAllowedError("There are Users assigned to this Role")

    def replace_right(self, right: Right) -> None:
        """Swap the stored copy of ``right`` into every role holding it."""
        for role in self.get_by_right(right.authority):
            updated = role.clone()
            updated.rights = {right if r.authority == right.authority else r for r in role.rights}
            self._save_and_propagate(updated)

    def remove_right(self, authority: str) -> None:
        for role in self.get_by_right(authority):
            updated = role.clone()
            updated.rights = {r for r in role.rights if r.authority != authority}
            self._save_and_propagate(updated)

    def _save_and_propagate(self, role: Role) -> None:
        saved = self.repository.save(role)
        if self.user_service is not None:
            self.user_service.replace_role(saved)

    def _require_editable(self, name: str) -> None:
        role = self.repository.find_by_id(name)
        if role is not None and role.protected:
            raise NotAllowedError(f"Role '{name}' is protected")


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class UserInfoEssentials:
    """Identity data taken from an external identity provider."""
    username: str
    first_name: str = PLACEHOLDER_FIRST_NAME
    last_name: str = PLACEHOLDER_LAST_NAME
    roles: set = field(default_factory=set)


def generate_nonce() -> str:
    return uuid.uuid4().hex[:8]


class UserService(AssemblingEntityService[User, Any, UserDto, Any]):
    """User management, credential checks and OAuth2 user provisioning.

    Args:
        repository: User repository (sequence or UUID identity)
        role_service: Resolves role names
        token_service: Used to invalidate sessions when credentials or access change
        max_failed_login_attempts: Login gets disabled after this many failures (0 = never)
    """

    resource_type = "User"
    read_only_fields = frozenset({"nonce", "password_reset_token", "source", "failed_login_attempts"})
    self_update_fields = frozenset({"first_name", "last_name", "phone", "mobile", "locale"})

    def __init__(
        self,
        repository: InMemoryRepository,
        role_service: RoleService,
        token_service: JwtTokenService,
        max_failed_login_attempts: int = 10,
        assembler: Optional[UserAssembler] = None,
    ):
        super().__init__(repository, assembler or UserAssembler())
        self.role_service = role_service
        self.token_service = token_service
        self.max_failed_login_attempts = max_failed_login_attempts
        self.api_token_service: Optional["ApiTokenService"] = None

    # Lookup

    def load_user_by_username(self, username: str) -> User:
        """Find a user by email, ignoring case.

        Raises:
            UserNotFoundError: If no user has this username
        """
        wanted = (username or "").lower()
        user = self.repository.find_one(lambda u: u.email.lower() == wanted)
        if user is None:
            raise UserNotFoundError(username)
        return user

    def load_users_by_role(self, role_name: str) -> List[User]:
        return self.repository.find_all_matching(lambda u: role_name in u.role_names)

    def get_user_from_principal(self, principal: Optional[UserDetails]) -> User:
        if principal is None:
            raise AuthenticationError("not logged in")
        return self.load_user_by_username(principal.username)

    # Passwords

    @staticmethod
    def hash_password(password: str) -> str:
        return generate_password_hash(password)

    def _sanitize_password(self, user: User, new_password: Optional[str]) -> None:
        existing = self.repository.find_by_id(user.id) if user.id is not None else None
        local = existing.has_local_authentication if existing is not None else True
        if new_password and local:
            user.nonce = generate_nonce()
            user.password = self.hash_password(new_password)
        else:
            user.password = existing.password if existing is not None else None
        if user.nonce is None and existing is not None:
            user.nonce = existing.nonce

    def authenticate(self, username: str, password: str) -> User:
        """Check local credentials and track failed attempts.

        Raises:
            AuthenticationError: Unknown user, wrong password, or login not possible
        """
        try:
            user = self.load_user_by_username(username)
        except UserNotFoundError:
            raise AuthenticationError("Bad credentials") from None

        if not user.has_local_authentication:
            raise AuthenticationError(f"User is authenticated via '{user.auth_source}'")
        if not user.can_login:
            raise AuthenticationError("User login is disabled")

        if not user.password or not check_password_hash(user.password, password):
            self.repository.update_by_id(user.id, self._count_failed_login)
            raise AuthenticationError("Bad credentials")

        if user.failed_login_attempts:
            user = self.repository.update_by_id(user.id, self._reset_failed_logins) or user
        return user

    def _count_failed_login(self, stored: User) -> User:
        updated = stored.clone()
        updated.failed_login_attempts += 1
        if self.max_failed_login_attempts and updated.failed_login_attempts >= self.max_failed_login_attempts:
            updated.login_disabled = True
            logger.warning(
                f"Login disabled for {updated.username} after {updated.failed_login_attempts} failed attempts"
            )
        return updated

    @staticmethod
    def _reset_failed_logins(stored: User) -> User:
        updated = stored.clone()
        updated.failed_login_attempts = 0
        return updated

    def reset_password_by_token(self, token: str, new_password: str) -> User:
        """Set a new password for the user holding ``token`` and consume the token.

        The login is re-enabled and all sessions of the user are invalidated.

        Raises:
            AuthenticationError: If no user holds this reset token
        """
        user = self.repository.find_one(lambda u: bool(token) and u.password_reset_token == token)
        if user is None:
            raise AuthenticationError("Invalid reset token")
        try:
            validators.validate_password(new_password)
        except ValueError as exc:
            raise ValidationError(str(exc), field="password") from exc
        updated = user.clone()
        self._sanitize_password(updated, new_password)
        updated.password_reset_token = None
        updated.login_disabled = False
        updated.failed_login_attempts = 0
        self.token_service.invalidate_subject(user.username)
        logger.info(f"Password of {user.username} set via reset token")
        return self.repository.save(updated)

    def create_password_reset_token(self, user: User) -> str:
        """Issue a fresh reset token for a locally authenticated user."""
        if not user.has_local_authentication:
            raise NotAllowedError(f"cannot reset password for users authenticated via '{user.auth_source}'")
        updated = user.clone()
        updated.password_reset_token = str(uuid.uuid4())
        return self.repository.save(updated).password_reset_token

    def terminate(self, entity_id: Any) -> User:
        """End every session of a user without changing the account.

        Raises:
            ResourceNotFoundError: If the user does not exist
        """
        user = self.get_by_id(entity_id)
        count = self.token_service.invalidate_subject(user.username)
        logger.info(f"Terminated {count} session(s) of {user.username}")
        return user

    def update_password(self, user: User, request: PasswordUpdateRequest) -> User:
        if not user.has_local_authentication:
            raise NotAllowedError(f"cannot reset password for users authenticated via '{user.auth_source}'")
        if not user.password or not check_password_hash(user.password, request.verification):
            raise AuthenticationError("mismatching passwords")
        updated = user.clone()
        self._sanitize_password(updated, request.password)
        self.token_service.invalidate_subject(user.username)
        return self.repository.save(updated)

    # Roles

    def resolve_roles(self, names: Iterable[str]) -> set[Role]:
        roles = set()
        for name in names:
            role = self.role_service.get_role(name)
            if role is None:
                raise ValidationError(f"Unknown role '{name}'", field="roles")
            roles.add(role)
        if not roles:
            default_role = self.role_service.get_default_role()
            if default_role is not None:
                roles.add(default_role)
        return roles

    def replace_role(self, role: Role) -> None:
        """Swap the stored copy of ``role`` into every user holding it."""
        for user in self.load_users_by_role(role.name):
            user.roles = {role if r.name == role.name else r for r in user.roles}
            self.repository.save(user)
            self._sync_api_tokens(user)

    # CRUD hooks

    def convert_dto_to_entity(self, dto: UserDto) -> User:
        user_id = None
        if dto.id is not None:
            try:
                user_id = self.repository.coerce_id(dto.id)
            except ValueError as exc:
                raise ValidationError(str(exc), field="id") from exc
        return User(
            id=user_id,
            email=dto.email.lower(),
            first_name=dto.first_name,
            last_name=dto.last_name,
            phone=dto.phone,
            mobile=dto.mobile,
            locale=dto.locale or DEFAULT_LOCALE,
            enabled=dto.enabled,
            login_disabled=dto.login_disabled,
            source=dto.source,
        )

    def _pre_create(self, dto: UserDto) -> User:
        user = self.convert_dto_to_entity(dto)
        user.id = None
        self._require_unique_email(user.email)
        if user.has_local_authentication:
            password = dto.password
            if not password:
                # Unusable random password until the user redeems the reset token
                password = secrets.token_urlsafe(96)
                user.password_reset_token = str(uuid.uuid4())
            self._sanitize_password(user, password)
        user.nonce = generate_nonce()
        user.roles = self.resolve_roles(dto.roles)
        return user

    def _post_create(self, saved: User) -> User:
        logger.info(f"Created user {saved.username} (id={saved.id}, source={saved.auth_source})")
        return super()._post_create(saved)

    def _pre_update(self, entity_id: Any, dto: UserDto) -> User:
        existing = self.get_by_id(entity_id)
        user = super()._pre_update(entity_id, dto)
        self._require_unique_email(user.email, entity_id)
        user.roles = self.resolve_roles(dto.roles)
        user.source = existing.source
        user.password_reset_token = existing.password_reset_token
        self._sanitize_password(user, dto.password)
        self._handle_security_change(existing, user)
        return user

    def _post_update(self, saved: User) -> User:
        self._sync_api_tokens(saved)
        return super()._post_update(saved)

    def _pre_patch(self, entity_id: Any, fields: Dict[str, Any]) -> User:
        existing = self.get_by_id(entity_id)
        check_patch(fields, USER_PATCH_CHECKS)
        password = fields.pop("password", None)
        if "roles" in fields:
            value = fields["roles"]
            if not isinstance(value, (list, tuple, set, frozenset)):
                raise ValidationError("roles must be a list", field="roles")
            names = [item.name if isinstance(item, Role) else item for item in value]
            fields["roles"] = self.resolve_roles(names) if names else set()
        if "email" in fields:
            try:
                fields["email"] = validators.validate_email(str(fields["email"]))
            except ValueError as exc:
                raise ValidationError(str(exc), field="email") from exc
            self._require_unique_email(fields["email"], entity_id)
        if password is not None:
            try:
                validators.validate_password(str(password))
            except ValueError as exc:
                raise ValidationError(str(exc), field="password") from exc
        user = super()._pre_patch(entity_id, fields)
        self._sanitize_password(user, password)
        self._handle_security_change(existing, user)
        return user

    def _post_patch(self, saved: User) -> User:
        self._sync_api_tokens(saved)
        return super()._post_patch(saved)

    def _pre_delete(self, entity_id: Any) -> None:
        user = self.get_by_id(entity_id)
        if self.api_token_service is not None:
            self.api_token_service.delete_all_for_user(user.username)
        self.token_service.invalidate_subject(user.username)

    def _post_delete(self, entity_id: Any) -> None:
        logger.info(f"Deleted user id={entity_id}")

    # Self service

    def self_update(self, user: User, fields: Dict[str, Any]) -> User:
        """Patch the caller's own profile; fields outside the profile are dropped."""
        permitted = {k: v for k, v in fields.items() if k in self.self_update_fields}
        return self.patch(user.id, permitted)

    def self_replace(self, user: User, dto: UserDto) -> User:
        """Take over the profile fields of a full user payload."""
        return self.self_update(user, {name: getattr(dto, name) for name in self.self_update_fields})

    def create_default_user(self, user_info: UserInfoEssentials, source: str) -> User:
        """Provision a user authenticated by an external identity provider."""
        dto = UserDto(
            email=user_info.username.lower(),
            first_name=user_info.first_name or PLACEHOLDER_FIRST_NAME,
            last_name=user_info.last_name or PLACEHOLDER_LAST_NAME,
            locale=DEFAULT_LOCALE,
            roles={role.name for role in user_info.roles},
            source=source,
        )
        return self.create(dto)

    # Helpers

    def _require_unique_email(self, email: str, own_id: Any = None) -> None:
        other = self.repository.find_one(lambda u: u.email.lower() == email.lower() and u.id != own_id)
        if other is not None:
            raise DuplicateResourceError("A user with this email already exists", self.resource_type, email)

    def _handle_security_change(self, existing: User, updated: User) -> None:
        if existing.email.lower() != updated.email.lower() and self.api_token_service is not None:
            self.api_token_service.delete_all_for_user(existing.username)
        if (
            existing.email.lower() != updated.email.lower()
            or existing.nonce != updated.nonce
            or existing.can_login != updated.can_login
        ):
            self.token_service.invalidate_subject(existing.username)

    def _sync_api_tokens(self, user: User) -> None:
        if self.api_token_service is not None:
            self.api_token_service.restrict_rights(user.username, user.authorities)


# ─────────────────────────────────────────────────────────────────────────────
# API tokens
# ─────────────────────────────────────────────────────────────────────────────

class ApiTokenService(AssemblingEntityService[ApiToken, uuid.UUID, ApiTokenDto, Any]):
    """API tokens act for their linked user with a subset of that user's rights.

    Args:
        repository: ApiToken repository (UUID identity)
        user_service: Resolves linked users (also used by the assembler)
        right_service: Resolves requested authorities
        token_service: Signs tokens and invalidates their sessions
        current_principal: Returns the authenticated caller, or None
        default_expiration: Validity in seconds when no ``valid_until`` is given
        today: Returns the current date
    """

    resource_type = "ApiToken"

    def __init__(
        self,
        repository: InMemoryRepository,
        user_service: UserService,
        right_service: RightService,
        token_service: JwtTokenService,
        current_principal: Callable[[], Optional[UserDetails]],
        default_expiration: int = 2592000,
        today: Callable[[], datetime.date] = datetime.date.today,
        assembler: Optional[ApiTokenAssembler] = None,
    ):
        super().__init__(repository, assembler or ApiTokenAssembler(user_service))
        self.user_service = user_service
        self.right_service = right_service
        self.token_service = token_service
        self.current_principal = current_principal
        self.default_expiration = default_expiration
        self._today = today

    # Visibility

    @staticmethod
    def sees_all(principal: UserDetails) -> bool:
        return principal.has_right(API_TOKEN_ADMIN_RIGHT)

    def visible_to(self, principal: UserDetails) -> Callable[[ApiToken], bool]:
        if self.sees_all(principal):
            return lambda token: True
        username = principal.username.lower()
        return lambda token: token.linked_user.lower() == username

    def list_for(self, principal: UserDetails, page_request: Optional[PageRequest] = None) -> Page:
        return self.list_filtered(self.visible_to(principal), page_request)

    def for_token(self, principal: UserDetails, token_id: uuid.UUID) -> "ApiTokenService":
        """Scope the next operation to ``token_id`` if the principal may see it."""
        visible = self.visible_to(principal)
        return self.test_access(lambda token: token.id == token_id and visible(token))

    # Lifecycle

    def _post_process(self, entity: ApiToken) -> ApiToken:
        if entity.status == ApiTokenStatus.ACTIVE and entity.is_expired(self._today()):
            entity.status = ApiTokenStatus.EXPIRED
            self.repository.save(entity)
            self.token_service.invalidate_subject(entity.username)
        return entity

    def convert_dto_to_entity(self, dto: ApiTokenDto) -> ApiToken:
        principal = self._require_user_principal()
        today = self._today()
        valid_until = dto.valid_until
        if valid_until is not None and valid_until <= today:
            raise ValidationError("API Token valid until date must lie in the future", field="validUntil")
        if valid_until is None:
            valid_until = today + datetime.timedelta(days=max(1, self.default_expiration // 86400))
        rights = set()
        for authority in dto.rights:
            right = self.right_service.find_by_authority(authority)
            if right is None:
                raise ValidationError(f"Unknown right '{authority}'", field="rights")
            rights.add(right)
        return ApiToken(
            linked_user=principal.username,
            description=dto.description,
            valid_until=valid_until,
            status=ApiTokenStatus.ACTIVE,
            rights=rights,
        )

    def _pre_create(self, dto: ApiTokenDto) -> ApiToken:
        principal = self._require_user_principal()
        missing = set(dto.rights) - set(principal.rights)
        if missing:
            raise NotAllowedError("User does not have all rights requested for the API token")
        return super()._pre_create(dto)

    def _post_create(self, saved: ApiToken) -> ApiToken:
        principal = self._require_user_principal()
        token_principal = UserDetails(
            id=str(saved.id),
            username=saved.username,
            first_name="API-Token",
            last_name=saved.linked_user,
            roles=frozenset(),
            rights=frozenset(saved.authorities),
            additional_claims=dict(principal.additional_claims),
        )
        expires_at = datetime.datetime.combine(saved.valid_until, datetime.time.min, tzinfo=datetime.timezone.utc)
        # Stored entity never carries the signed token
        result = saved.clone()
        result.token = self.token_service.create_token(token_principal, SessionTokenType.API, expires_at)
        logger.info(f"Created API token {saved.id} for {saved.linked_user}")
        return super()._post_create(result)

    def _pre_update(self, entity_id: uuid.UUID, dto: ApiTokenDto) -> ApiToken:
        raise UnsupportedOperationError("API Token updates via PUT method are not supported")

    def _pre_patch(self, entity_id: uuid.UUID, fields: Dict[str, Any]) -> ApiToken:
        if set(fields) != {"status"} or not isinstance(fields["status"], str):
            raise UnsupportedOperationError("API Token updates via PATCH method are not supported")
        try:
            status = ApiTokenStatus(fields["status"])
        except ValueError as exc:
            raise ValidationError(f"Invalid status '{fields['status']}'", field="status") from exc
        if status != ApiTokenStatus.REVOKED:
            raise ValidationError("only REVOKED status updates are allowed", field="status")
        current = self.get_by_id(entity_id)
        if current.status != ApiTokenStatus.ACTIVE:
            raise ResourceUpdateError("current API token status must be ACTIVE", self.resource_type, entity_id)
        self.token_service.invalidate_subject(current.username)
        revoked = current.clone()
        revoked.status = ApiTokenStatus.REVOKED
        revoked.valid_until = self._today()
        logger.info(f"Revoked API token {entity_id} of {current.linked_user}")
        return revoked

    def _pre_delete(self, entity_id: uuid.UUID) -> None:
        token = self.repository.find_by_id(entity_id)
        if token is None:
            raise ResourceNotFoundError(self.resource_type, entity_id)
        self.token_service.invalidate_subject(token.username)

    # Linked user changes

    def delete_all_for_user(self, username: str) -> int:
        tokens = self.repository.find_all_matching(lambda t: t.linked_user.lower() == username.lower())
        for token in tokens:
            self.token_service.invalidate_subject(token.username)
            self.repository.delete_by_id(token.id)
        return len(tokens)

    def restrict_rights(self, username: str, authorities: Iterable[str]) -> None:
        """Drop token rights the linked user no longer holds; delete tokens left without rights."""
        allowed = set(authorities)
        for token in self.repository.find_all_matching(lambda t: t.linked_user.lower() == username.lower()):
            kept = {right for right in token.rights if right.authority in allowed}
            if kept == token.rights:
                continue
            self.token_service.invalidate_subject(token.username)
            if kept:
                token.rights = kept
                self.repository.save(token)
            else:
                self.repository.delete_by_id(token.id)

    def is_usable(self, token_id: Any) -> bool:
        """True if the token exists, is ACTIVE and not expired."""
        try:
            token = self.get_by_id(self.repository.coerce_id(token_id))
        except (ValueError, ResourceNotFoundError):
            return False
        return token.status == ApiTokenStatus.ACTIVE

    def _require_user_principal(self) -> UserDetails:
        principal = self.current_principal()
        if principal is None:
            raise AuthenticationError("API Token creation requires a user context")
        try:
            self.user_service.load_user_by_username(principal.username)
        except UserNotFoundError as exc:
            raise NotAllowedError("API Token creation requires a user context") from exc
        return principal
