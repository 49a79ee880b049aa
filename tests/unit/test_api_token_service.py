"""Unit tests for API token creation, visibility, revocation and expiry."""
import datetime

import pytest

from backend.core.dto import ApiTokenDto, UserDto
from backend.core.exceptions import (
    AuthenticationError,
    NotAllowedError,
    ResourceNotFoundError,
    ResourceUpdateError,
    TokenValidationError,
    UnsupportedOperationError,
    ValidationError,
)
from backend.core.models import ApiTokenStatus, UserDetails
from tests.conftest import ADMIN_EMAIL, TODAY


@pytest.fixture()
def grace(services, caller):
    user = services.users.create(UserDto(
        email="grace@example.com", first_name="Grace", last_name="Hopper", roles={"USER"}, password="Secret123",
    ))
    caller.principal = UserDetails.from_user(user)
    return user


def _admin(services):
    return UserDetails.from_user(services.users.load_user_by_username(ADMIN_EMAIL))


def test_create_returns_signed_token_but_stores_none(services, grace):
    created = services.api_tokens.create(ApiTokenDto(description="ci", rights={"API_TOKEN"}))

    assert created.token
    assert created.linked_user == "grace@example.com"
    assert created.status == ApiTokenStatus.ACTIVE
    assert services.api_tokens.get_by_id(created.id).token is None

    claims = services.tokens.verify_token(created.token)
    assert claims["typ"] == "API"
    assert claims["rights"] == ["API_TOKEN"]
    assert claims["sub"] == f"grace@example.com-api-token-{created.id}"


def test_default_expiry_from_configuration(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    assert created.valid_until == TODAY + datetime.timedelta(days=30)


def test_valid_until_must_lie_in_future(services, grace):
    for valid_until in (TODAY, TODAY - datetime.timedelta(days=1)):
        with pytest.raises(ValidationError) as exc_info:
            services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}, valid_until=valid_until))
        assert exc_info.value.field == "validUntil"


def test_rights_must_be_subset_of_callers_rights(services, grace):
    with pytest.raises(NotAllowedError):
        services.api_tokens.create(ApiTokenDto(rights={"USER_DELETE"}))


def test_unknown_right_rejected(services, caller):
    admin = _admin(services)
    caller.principal = UserDetails(id=admin.id, username=admin.username, rights=admin.rights | {"TELEPORT"})
    with pytest.raises(ValidationError):
        services.api_tokens.create(ApiTokenDto(rights={"TELEPORT"}))


def test_creation_requires_user_principal(services, caller):
    caller.principal = None
    with pytest.raises(AuthenticationError):
        services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))

    caller.principal = UserDetails(id="x", username="ghost-api-token-1", rights=frozenset({"API_TOKEN"}))
    with pytest.raises(NotAllowedError):
        services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))


def test_users_see_own_tokens_admins_see_all(services, caller, grace):
    own = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    caller.principal = _admin(services)
    admin_token = services.api_tokens.create(ApiTokenDto(rights={"USER_READ"}))

    grace_view = services.api_tokens.list_for(UserDetails.from_user(grace))
    admin_view = services.api_tokens.list_for(_admin(services))

    assert [t.id for t in grace_view] == [own.id]
    assert {t.id for t in admin_view} == {own.id, admin_token.id}
    with pytest.raises(ResourceNotFoundError):
        services.api_tokens.for_token(UserDetails.from_user(grace), admin_token.id)
    assert services.api_tokens.for_token(_admin(services), own.id).get(own.id).id == own.id


def test_put_is_unsupported(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    with pytest.raises(UnsupportedOperationError):
        services.api_tokens.update(created.id, ApiTokenDto(rights={"API_TOKEN"}))


def test_revoke_invalidates_token(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))

    revoked = services.api_tokens.patch(created.id, {"status": "REVOKED"})

    assert revoked.status == ApiTokenStatus.REVOKED
    assert revoked.valid_until == TODAY
    assert not services.api_tokens.is_usable(created.id)
    with pytest.raises(TokenValidationError):
        services.authentication.authenticate_bearer(created.token)


def test_revoke_twice_rejected(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    services.api_tokens.patch(created.id, {"status": "REVOKED"})
    with pytest.raises(ResourceUpdateError):
        services.api_tokens.patch(created.id, {"status": "REVOKED"})


@pytest.mark.parametrize("fields, error", [
    ({"status": "ACTIVE"}, ValidationError),
    ({"status": "PAUSED"}, ValidationError),
    ({"description": "renamed"}, UnsupportedOperationError),
    ({"status": "REVOKED", "description": "x"}, UnsupportedOperationError),
])
def test_patch_accepts_only_revocation(services, grace, fields, error):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    with pytest.raises(error):
        services.api_tokens.patch(created.id, fields)


def test_delete_invalidates_token(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    services.api_tokens.delete_by_id(created.id)
    assert not services.api_tokens.exists_by_id(created.id)
    with pytest.raises(TokenValidationError):
        services.tokens.verify_token(created.token)


def test_expired_tokens_are_marked_on_read(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    stored = services.api_tokens.repository.find_by_id(created.id)
    stored.valid_until = TODAY

    assert services.api_tokens.get_by_id(created.id).status == ApiTokenStatus.EXPIRED
    assert not services.api_tokens.is_usable(created.id)


def test_email_change_deletes_tokens(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    services.users.patch(grace.id, {"email": "grace.hopper@example.com"})
    assert not services.api_tokens.exists_by_id(created.id)


def test_api_token_authenticates_with_its_rights(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    principal = services.authentication.authenticate_bearer(created.token)
    assert principal.rights == frozenset({"API_TOKEN"})
    assert principal.id == str(created.id)


def test_representation_links_owner(services, grace):
    created = services.api_tokens.create(ApiTokenDto(rights={"API_TOKEN"}))
    representation = services.api_tokens.to_representation(created)
    assert representation.linked_user.id == grace.id
    assert representation.linked_user.name == "Grace Hopper"
    assert representation.token == created.token
    assert services.api_tokens.get(created.id).token is None
