"""REST API tests for /v1/api-tokens."""
import datetime

import pytest

from tests.conftest import auth_header


def _create_token(client, token, rights=("API_TOKEN",), **extra):
    payload = {"description": "CI pipeline", "rights": list(rights)}
    payload.update(extra)
    return client.post("/v1/api-tokens", json=payload, headers=auth_header(token))


def test_create_returns_signed_token_once(client, user_token):
    response = _create_token(client, user_token)
    assert response.status_code == 201
    body = response.get_json()
    assert response.headers["Location"] == f"/v1/api-tokens/{body['id']}"
    assert body["token"]
    assert body["status"] == "ACTIVE"
    assert body["linkedUser"]["name"] == "grace@example.com"
    assert [right["authority"] for right in body["rights"]] == ["API_TOKEN"]

    fetched = client.get(f"/v1/api-tokens/{body['id']}", headers=auth_header(user_token)).get_json()
    assert fetched.get("token") is None


def test_default_validity(client, user_token):
    body = _create_token(client, user_token).get_json()
    expected = datetime.date.today() + datetime.timedelta(days=30)
    assert body["validUntil"] == expected.isoformat()


def test_valid_until_must_be_in_future(client, user_token):
    response = _create_token(client, user_token, validUntil=datetime.date.today().isoformat())
    assert response.status_code == 400


def test_rights_must_be_held_by_creator(client, user_token):
    assert _create_token(client, user_token, rights=["USER_READ"]).status_code == 403


def test_rights_required(client, user_token):
    assert _create_token(client, user_token, rights=[]).status_code == 400


@pytest.mark.critical
def test_users_see_only_their_own_tokens(client, admin_token, user_token):
    mine = _create_token(client, user_token).get_json()
    admins = _create_token(client, admin_token).get_json()

    page = client.get("/v1/api-tokens", headers=auth_header(user_token)).get_json()
    assert [t["id"] for t in page["content"]] == [mine["id"]]
    assert client.get(f"/v1/api-tokens/{admins['id']}", headers=auth_header(user_token)).status_code == 404

    # API_TOKEN_ADMIN sees all tokens, but never another user's secret
    everything = client.get("/v1/api-tokens", headers=auth_header(admin_token)).get_json()
    assert {t["id"] for t in everything["content"]} == {mine["id"], admins["id"]}
    assert all("token" not in t for t in everything["content"] if t["id"] == mine["id"])


def test_api_token_authenticates_until_revoked(client, user_token):
    created = _create_token(client, user_token).get_json()
    api_token = created["token"]
    assert client.get("/v1/api-tokens", headers=auth_header(api_token)).status_code == 200

    response = client.patch(f"/v1/api-tokens/{created['id']}", json={"status": "REVOKED"},
                            headers=auth_header(user_token))
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "REVOKED"
    assert body["validUntil"] == datetime.date.today().isoformat()

    assert client.get("/v1/api-tokens", headers=auth_header(api_token)).status_code == 401


def test_revoke_twice_rejected(client, user_token):
    created = _create_token(client, user_token).get_json()
    url = f"/v1/api-tokens/{created['id']}"
    client.patch(url, json={"status": "REVOKED"}, headers=auth_header(user_token))
    assert client.patch(url, json={"status": "REVOKED"}, headers=auth_header(user_token)).status_code == 400


@pytest.mark.parametrize("payload, status", [
    ({"description": "renamed"}, 405),
    ({"status": "ACTIVE"}, 400),
    ({"status": "BROKEN"}, 400),
])
def test_patch_only_revokes(client, user_token, payload, status):
    created = _create_token(client, user_token).get_json()
    response = client.patch(f"/v1/api-tokens/{created['id']}", json=payload, headers=auth_header(user_token))
    assert response.status_code == status


def test_put_not_supported(client, user_token):
    created = _create_token(client, user_token).get_json()
    response = client.put(f"/v1/api-tokens/{created['id']}", json={"description": "x", "rights": ["API_TOKEN"]},
                          headers=auth_header(user_token))
    assert response.status_code == 405


def test_delete_token(client, user_token):
    created = _create_token(client, user_token).get_json()
    url = f"/v1/api-tokens/{created['id']}"
    assert client.delete(url, headers=auth_header(user_token)).status_code == 204
    assert client.get(url, headers=auth_header(user_token)).status_code == 404
    assert client.get("/v1/api-tokens", headers=auth_header(created["token"])).status_code == 401


def test_invalid_token_id(client, user_token):
    assert client.get("/v1/api-tokens/not-a-uuid", headers=auth_header(user_token)).status_code == 400
