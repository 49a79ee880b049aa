"""Unit tests for field visibility filtering and JSON serialization."""
import datetime
import uuid
from dataclasses import dataclass, field
from typing import Optional

import pytest

from backend.core.access import AccessAwareFilter, allow_for, camel_case, visibility_table
from backend.core.models import ApiTokenStatus, Right, UserDetails
from backend.core.repository import Page
from backend.core.representations import ApiTokenRepresentation, BasicRepresentation, UserRepresentation


def _principal(id=1, username="someone@example.com", roles=(), rights=()):
    return UserDetails(id=id, username=username, roles=frozenset(roles), rights=frozenset(rights))


def _user_rep():
    return UserRepresentation(
        id=5, first_name="Ada", last_name="Lovelace", phone="+44 20 1234", mobile="+44 77 1234",
        email="ada@example.com", locale="en",
    )


def test_camel_case():
    assert camel_case("first_name") == "firstName"
    assert camel_case("id") == "id"
    assert camel_case("created_at") == "createdAt"


def test_visibility_table_lists_gated_fields():
    table = {attr: predicate for attr, _, predicate in visibility_table(UserRepresentation)}
    assert table["phone"] is not None
    assert table["first_name"] is None


def test_no_principal_sees_everything():
    rendered = AccessAwareFilter().serialize(_user_rep())
    assert rendered["phone"] == "+44 20 1234"
    assert rendered["mobile"] == "+44 77 1234"


def test_stranger_does_not_see_gated_fields():
    rendered = AccessAwareFilter(_principal()).serialize(_user_rep())
    assert "phone" not in rendered
    assert "mobile" not in rendered
    assert rendered["firstName"] == "Ada"


@pytest.mark.parametrize("principal", [
    _principal(roles=["ADMIN"]),
    _principal(rights=["USER_READ"]),
    _principal(id=5),
    _principal(id="5"),
    _principal(id=99, username="ada@example.com"),
])
def test_admin_right_holder_and_owner_see_gated_fields(principal):
    rendered = AccessAwareFilter(principal).serialize(_user_rep())
    assert rendered["phone"] == "+44 20 1234"


def test_api_token_secret_visible_to_owner_only():
    rep = ApiTokenRepresentation(
        id=uuid.UUID("00000000-0000-0000-0000-000000000001"),
        linked_user=BasicRepresentation(3, "Grace Hopper"),
        valid_until=datetime.date(2030, 2, 1),
        status=ApiTokenStatus.ACTIVE,
        rights=frozenset({Right("API_TOKEN", "Own tokens")}),
        token="signed.jwt.value",
    )

    owner = AccessAwareFilter(_principal(id=3)).serialize(rep)
    admin = AccessAwareFilter(_principal(id=1, roles=["ADMIN"], rights=["API_TOKEN_ADMIN"])).serialize(rep)

    assert owner["token"] == "signed.jwt.value"
    assert "token" not in admin
    assert owner["status"] == "ACTIVE"
    assert owner["validUntil"] == "2030-02-01"
    assert owner["id"] == "00000000-0000-0000-0000-000000000001"
    assert owner["linkedUser"] == {"id": 3, "name": "Grace Hopper"}
    assert owner["rights"] == [{"authority": "API_TOKEN", "description": "Own tokens"}]


def test_page_serialization():
    page = Page([_user_rep()], number=0, size=20, total_elements=1)
    rendered = AccessAwareFilter(_principal()).serialize(page)
    assert rendered["totalElements"] == 1
    assert rendered["totalPages"] == 1
    assert rendered["number"] == 0
    assert "phone" not in rendered["content"][0]


def test_sets_are_serialized_in_stable_order():
    rendered = AccessAwareFilter().serialize({"values": {"b", "a", "c"}})
    assert rendered == {"values": ["a", "b", "c"]}


def test_nested_dataclass_fields_are_filtered():
    @dataclass
    class Secretive:
        id: int
        hidden: Optional[str] = field(default=None, metadata=allow_for(rights=["SEE"], owner=False))

    @dataclass
    class Wrapper:
        inner: Secretive

    value = Wrapper(Secretive(1, "x"))
    assert AccessAwareFilter(_principal()).serialize(value) == {"inner": {"id": 1}}
    assert AccessAwareFilter(_principal(rights=["SEE"])).serialize(value) == {"inner": {"id": 1, "hidden": "x"}}


def test_unknown_type_raises():
    with pytest.raises(TypeError):
        AccessAwareFilter().serialize(object())
