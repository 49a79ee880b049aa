"""Unit tests for input validators and payload parsers."""
import datetime

import pytest

from backend.core import validators
from backend.core.dto import (
    USER_PATCH_CHECKS,
    ApiTokenDto,
    LoginRequest,
    PasswordUpdateRequest,
    RightDto,
    RoleDto,
    UserDto,
    camel_case,
    check_patch,
    parse_patch,
    snake_case,
)
from backend.core.exceptions import ValidationError
from backend.core.models import DEFAULT_LOCALE


def _user_payload(**overrides):
    payload = {"email": "Ada@Example.com", "firstName": "Ada", "lastName": "Lovelace"}
    payload.update(overrides)
    return payload


# ─────────────────────────────────────────────────────────────────────────────
# Validators
# ─────────────────────────────────────────────────────────────────────────────
def test_validate_email_normalizes():
    assert validators.validate_email("  Ada@Example.COM ") == "ada@example.com"


@pytest.mark.parametrize("email", ["", "ada", "ada@", "@example.com", "ada@localhost"])
def test_validate_email_rejects(email):
    with pytest.raises(ValueError):
        validators.validate_email(email)


def test_validate_name_rejects_markup():
    with pytest.raises(ValueError, match="invalid characters"):
        validators.validate_name("<script>", "First name")
    assert validators.validate_name("  Ada ", "First name") == "Ada"


@pytest.mark.parametrize("password", ["short1", "lettersonly", "12345678"])
def test_validate_password_rejects(password):
    with pytest.raises(ValueError):
        validators.validate_password(password)


def test_normalize_authority():
    assert validators.normalize_authority(" user_read ") == "USER_READ"
    with pytest.raises(ValueError):
        validators.normalize_authority("user-read")


def test_snake_case():
    assert snake_case("firstName") == "first_name"
    assert snake_case("loginDisabled") == "login_disabled"
    assert snake_case("email") == "email"


# ─────────────────────────────────────────────────────────────────────────────
# Payload parsers
# ─────────────────────────────────────────────────────────────────────────────
def test_user_dto_from_payload():
    dto = UserDto.from_payload(_user_payload(roles=["ADMIN", {"name": "USER"}], loginDisabled=True))
    assert dto.email == "ada@example.com"
    assert dto.roles == {"ADMIN", "USER"}
    assert dto.login_disabled is True
    assert dto.locale == DEFAULT_LOCALE


@pytest.mark.parametrize("overrides, field", [
    ({"email": None}, "email"),
    ({"email": "nope"}, "email"),
    ({"firstName": ""}, "firstName"),
    ({"lastName": 42}, "lastName"),
    ({"phone": "call me"}, "phone"),
    ({"locale": "english"}, "locale"),
    ({"password": "short"}, "password"),
    ({"enabled": "yes"}, "enabled"),
    ({"roles": "ADMIN"}, "roles"),
])
def test_user_dto_reports_field(overrides, field):
    with pytest.raises(ValidationError) as exc_info:
        UserDto.from_payload(_user_payload(**overrides))
    assert exc_info.value.field == field


def test_payload_must_be_object():
    with pytest.raises(ValidationError, match="JSON object"):
        UserDto.from_payload(["ada@example.com"])


def test_role_dto_normalizes_name():
    dto = RoleDto.from_payload({"name": "auditor", "rights": ["USER_READ"]})
    assert dto.name == "AUDITOR"
    assert dto.rights == {"USER_READ"}


def test_right_dto_requires_authority():
    with pytest.raises(ValidationError) as exc_info:
        RightDto.from_payload({"description": "no authority"})
    assert exc_info.value.field == "authority"


def test_api_token_dto_parses_date():
    dto = ApiTokenDto.from_payload({"rights": ["API_TOKEN"], "validUntil": "2030-02-01"})
    assert dto.valid_until == datetime.date(2030, 2, 1)


def test_api_token_dto_requires_rights():
    with pytest.raises(ValidationError) as exc_info:
        ApiTokenDto.from_payload({"description": "empty"})
    assert exc_info.value.field == "rights"


def test_api_token_dto_rejects_bad_date():
    with pytest.raises(ValidationError) as exc_info:
        ApiTokenDto.from_payload({"rights": ["API_TOKEN"], "validUntil": "next week"})
    assert exc_info.value.field == "validUntil"


def test_password_update_request_validates_new_password():
    with pytest.raises(ValidationError) as exc_info:
        PasswordUpdateRequest.from_payload({"password": "weak", "verification": "Secret123"})
    assert exc_info.value.field == "password"


def test_login_request_normalizes_username():
    request = LoginRequest.from_payload({"username": " Ada@Example.com ", "password": "x"})
    assert request.username == "ada@example.com"
    with pytest.raises(ValidationError):
        LoginRequest.from_payload({"username": "   ", "password": "x"})


def test_parse_patch_converts_keys():
    assert parse_patch({"firstName": "Ada", "loginDisabled": True}) == {"first_name": "Ada", "login_disabled": True}


def test_camel_case_reverses_snake_case():
    assert camel_case("login_disabled") == "loginDisabled"
    assert camel_case(snake_case("firstName")) == "firstName"
    assert camel_case("locale") == "locale"


def test_check_patch_normalizes_known_fields():
    fields = {"first_name": " Ada ", "mobile": "", "shoe_size": "anything"}
    assert check_patch(fields, USER_PATCH_CHECKS) == {"first_name": "Ada", "mobile": None, "shoe_size": "anything"}


@pytest.mark.parametrize("fields, field_name", [
    ({"first_name": None}, "firstName"),
    ({"locale": 7}, "locale"),
    ({"enabled": "true"}, "enabled"),
    ({"login_disabled": 0}, "loginDisabled"),
])
def test_check_patch_names_offending_field(fields, field_name):
    with pytest.raises(ValidationError) as exc_info:
        check_patch(fields, USER_PATCH_CHECKS)
    assert exc_info.value.field == field_name
