"""REST API tests for /v1/users with UUID user identities (USER_ID_STRATEGY=uuid)."""
import dataclasses
import uuid

import pytest

from backend.flask_app import create_app
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD, USER_PASSWORD, auth_header, create_user, login


@pytest.fixture()
def uuid_client(cfg):
    app = create_app(dataclasses.replace(cfg, user_id_strategy="uuid"))
    app.config.update(TESTING=True)
    with app.test_client() as client:
        yield client


@pytest.fixture()
def uuid_admin_token(uuid_client):
    return login(uuid_client, ADMIN_EMAIL, ADMIN_PASSWORD)


def test_users_get_uuid_ids(uuid_client, uuid_admin_token):
    created = create_user(uuid_client, uuid_admin_token, "ada@example.com")
    assert uuid.UUID(created["id"])

    response = uuid_client.get(f"/v1/users/{created['id']}", headers=auth_header(uuid_admin_token))
    assert response.status_code == 200
    assert response.get_json()["email"] == "ada@example.com"


def test_invalid_uuid_path_rejected(uuid_client, uuid_admin_token):
    assert uuid_client.get("/v1/users/42", headers=auth_header(uuid_admin_token)).status_code == 400
    missing = uuid_client.get(f"/v1/users/{uuid.uuid4()}", headers=auth_header(uuid_admin_token))
    assert missing.status_code == 404


def test_update_user(uuid_client, uuid_admin_token):
    created = create_user(uuid_client, uuid_admin_token, "ada@example.com")
    payload = {"id": created["id"], "email": "ada@example.com", "firstName": "Ada", "lastName": "King"}
    response = uuid_client.put(f"/v1/users/{created['id']}", json=payload, headers=auth_header(uuid_admin_token))
    assert response.status_code == 200
    assert response.get_json()["lastName"] == "King"

    payload["id"] = str(uuid.uuid4())
    response = uuid_client.put(f"/v1/users/{created['id']}", json=payload, headers=auth_header(uuid_admin_token))
    assert response.status_code == 400


def test_patch_user_with_own_id(uuid_client, uuid_admin_token):
    created = create_user(uuid_client, uuid_admin_token, "ada@example.com")
    response = uuid_client.patch(f"/v1/users/{created['id']}", json={"id": created["id"], "lastName": "King"},
                                 headers=auth_header(uuid_admin_token))
    assert response.status_code == 200
    assert response.get_json()["id"] == created["id"]
    assert response.get_json()["lastName"] == "King"


@pytest.mark.parametrize("other_id", [str(uuid.uuid4()), "not-a-uuid", 7])
def test_patch_user_with_other_id_rejected(uuid_client, uuid_admin_token, other_id):
    created = create_user(uuid_client, uuid_admin_token, "ada@example.com")
    response = uuid_client.patch(f"/v1/users/{created['id']}", json={"id": other_id},
                                 headers=auth_header(uuid_admin_token))
    assert response.status_code == 400


def test_delete_user(uuid_client, uuid_admin_token):
    created = create_user(uuid_client, uuid_admin_token, "ada@example.com")
    response = uuid_client.delete(f"/v1/users/{created['id']}", headers=auth_header(uuid_admin_token))
    assert response.status_code == 204
    assert uuid_client.get(f"/v1/users/{created['id']}", headers=auth_header(uuid_admin_token)).status_code == 404


def test_list_users_sorted_by_id(uuid_client, uuid_admin_token):
    create_user(uuid_client, uuid_admin_token, "ada@example.com")
    response = uuid_client.get("/v1/users?sort=id,asc", headers=auth_header(uuid_admin_token))
    assert response.status_code == 200
    ids = [user["id"] for user in response.get_json()["content"]]
    assert ids == sorted(ids, key=uuid.UUID)


def test_owner_sees_own_phone(uuid_client, uuid_admin_token):
    created = create_user(uuid_client, uuid_admin_token, "ada@example.com", phone="+44 20 7946")
    token = login(uuid_client, "ada@example.com", USER_PASSWORD)

    body = uuid_client.get("/v1/users/me", headers=auth_header(token)).get_json()
    assert body["id"] == created["id"]
    assert body["phone"] == "+44 20 7946"


def test_patch_me(uuid_client, uuid_admin_token):
    create_user(uuid_client, uuid_admin_token, "ada@example.com")
    token = login(uuid_client, "ada@example.com", USER_PASSWORD)

    response = uuid_client.patch("/v1/users/me", json={"firstName": "Augusta"}, headers=auth_header(token))
    assert response.status_code == 200
    assert response.get_json()["firstName"] == "Augusta"
    response = uuid_client.patch("/v1/users/me", json={"firstName": 5}, headers=auth_header(token))
    assert response.status_code == 400


def test_api_token_secret_returned_to_owner(uuid_client, uuid_admin_token):
    create_user(uuid_client, uuid_admin_token, "ada@example.com")
    token = login(uuid_client, "ada@example.com", USER_PASSWORD)

    response = uuid_client.post("/v1/api-tokens", json={"rights": ["API_TOKEN"]}, headers=auth_header(token))
    assert response.status_code == 201
    assert response.get_json()["token"]


def test_terminate_user(uuid_client, uuid_admin_token):
    created = create_user(uuid_client, uuid_admin_token, "ada@example.com")
    token = login(uuid_client, "ada@example.com", USER_PASSWORD)

    response = uuid_client.post(f"/v1/users/{created['id']}/terminate", headers=auth_header(uuid_admin_token))
    assert response.status_code == 204
    assert uuid_client.get("/v1/users/me", headers=auth_header(token)).status_code == 401
