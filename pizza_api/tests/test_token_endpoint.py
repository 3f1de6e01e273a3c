"""
Tests for POST /oauth/token (client_credentials, authorization_code), /oauth/revoke and /oauth/introspect.
"""
import base64
import hashlib
import os
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from pizza_api.models import AuthorizationCode, OAuthToken
from pizza_api.tokens import verify

REDIRECT_URI = "http://127.0.0.1:8000/callback"
TEST_SECRET = os.environ["JWT_SECRET"]


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com", "password1", role="admin")


@pytest.fixture
def c1(make_client, owner):
    return make_client("c1", "s1", user_id=owner.id)


def _authorize(client, bearer, client_id="c1", **extra):
    """Run GET /oauth/authorize as a logged-in resource owner; returns the code from the redirect."""
    params = {"client_id": client_id, "redirect_uri": REDIRECT_URI, "scope": "read", **extra}
    r = client.get(
        "/oauth/authorize",
        params=params,
        headers={"Authorization": f"Bearer {bearer}"},
        follow_redirects=False,
    )
    assert r.status_code == 302, r.text
    return parse_qs(urlsplit(r.headers["location"]).query)["code"][0]


def _redeem(client, code, client_id="c1", client_secret="s1", **extra):
    data = {"grant_type": "authorization_code", "code": code, "client_id": client_id, "redirect_uri": REDIRECT_URI}
    if client_secret is not None:
        data["client_secret"] = client_secret
    data.update(extra)
    return client.post("/oauth/token", data=data)


def test_client_credentials_issues_token_for_owner(client, c1, owner):
    r = client.post("/oauth/token", data={"grant_type": "client_credentials", "client_id": "c1", "client_secret": "s1"})
    assert r.status_code == 200
    assert r.headers["cache-control"] == "no-store"
    body = r.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == 7200
    assert body["scope"] == "read write"
    assert "refresh_token" not in body
    claims = verify(body["access_token"], TEST_SECRET)
    assert claims.audience == "c1"
    assert claims.user_id == str(owner.id)
    assert claims.role == "admin"


def test_client_credentials_with_basic_auth(client, c1):
    basic = base64.b64encode(b"c1:s1").decode()
    r = client.post("/oauth/token", data={"grant_type": "client_credentials"},
                    headers={"Authorization": f"Basic {basic}"})
    assert r.status_code == 200


def test_client_credentials_token_recorded_without_user(client, c1, store):
    r = client.post("/oauth/token", data={"grant_type": "client_credentials", "client_id": "c1", "client_secret": "s1"})
    record = store.db.query(OAuthToken).filter(OAuthToken.access_token == r.json()["access_token"]).one()
    assert record.client_id == "c1"
    assert record.user_id is None


def test_wrong_secret_is_invalid_client(client, c1):
    r = client.post("/oauth/token", data={"grant_type": "client_credentials", "client_id": "c1", "client_secret": "nope"})
    assert r.status_code == 401
    assert r.json() == {"error": "invalid_client"}


def test_unknown_client_is_invalid_client(client):
    r = client.post("/oauth/token", data={"grant_type": "client_credentials", "client_id": "zz", "client_secret": "s1"})
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_client"


@pytest.mark.parametrize("grant_type", ["password", "refresh_token", None])
def test_unsupported_grant_type(client, c1, grant_type):
    data = {"client_id": "c1", "client_secret": "s1"}
    if grant_type:
        data["grant_type"] = grant_type
    r = client.post("/oauth/token", data=data)
    assert r.status_code == 400
    assert r.json()["error"] == "unsupported_grant_type"


def test_grant_not_registered_for_client(client, make_client, owner):
    make_client("c2", "s2", user_id=owner.id, grant_types="authorization_code")
    r = client.post("/oauth/token", data={"grant_type": "client_credentials", "client_id": "c2", "client_secret": "s2"})
    assert r.status_code == 400
    assert r.json()["error"] == "unauthorized_client"


def test_client_without_owner_is_server_error(client, make_client):
    make_client("orphan", "s9", user_id=None)
    r = client.post("/oauth/token",
                    data={"grant_type": "client_credentials", "client_id": "orphan", "client_secret": "s9"})
    assert r.status_code == 500
    assert r.json() == {"error": "server_error"}


def test_deactivated_owner_gets_no_token(client, c1, owner, store):
    owner.is_active = False
    store.db.commit()
    r = client.post("/oauth/token", data={"grant_type": "client_credentials", "client_id": "c1", "client_secret": "s1"})
    assert r.status_code == 400
    assert r.json() == {"error": "invalid_grant"}
    assert store.db.query(OAuthToken).count() == 0


def test_user_deactivated_after_authorize_cannot_redeem(client, c1, login_token, store):
    code = _authorize(client, login_token("alice@example.com", "password1"))
    alice = store.get_user_by_email("alice@example.com")
    alice.is_active = False
    store.db.commit()
    r = _redeem(client, code)
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_public_client_cannot_use_client_credentials(client, make_client, owner):
    make_client("pub", None, user_id=owner.id)
    r = client.post("/oauth/token", data={"grant_type": "client_credentials", "client_id": "pub"})
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_client"


def test_authorization_code_flow(client, c1, login_token, store):
    bearer = login_token("alice@example.com", "password1")
    alice = store.get_user_by_email("alice@example.com")
    code = _authorize(client, bearer, state="xyz")

    r = _redeem(client, code)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["scope"] == "read"
    assert body["refresh_token"]
    claims = verify(body["access_token"], TEST_SECRET)
    assert claims.audience == "c1"
    assert claims.user_id == str(alice.id)
    assert claims.role == "user"
    assert verify(body["refresh_token"], TEST_SECRET).extra["id"] == body["access_token"]

    again = _redeem(client, code)
    assert again.status_code == 400
    assert again.json()["error"] == "invalid_grant"


def test_unknown_code_is_invalid_grant(client, c1):
    r = _redeem(client, "not-a-code")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_missing_code_is_invalid_request(client, c1):
    r = client.post("/oauth/token", data={"grant_type": "authorization_code", "client_id": "c1", "client_secret": "s1"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"


def test_expired_code(client, c1, login_token, store):
    code = _authorize(client, login_token())
    record = store.db.get(AuthorizationCode, code)
    record.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    store.db.commit()

    r = _redeem(client, code)
    assert r.status_code == 400
    assert r.json()["error"] == "code_expired"


def test_code_bound_to_issuing_client(client, c1, make_client, owner, login_token):
    make_client("c2", "s2", user_id=owner.id)
    code = _authorize(client, login_token())
    r = _redeem(client, code, client_id="c2", client_secret="s2")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"
    assert _redeem(client, code).status_code == 200


def test_redirect_uri_mismatch_at_redeem(client, c1, login_token):
    code = _authorize(client, login_token())
    r = _redeem(client, code, redirect_uri="http://127.0.0.1:8000/other")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


def test_wrong_secret_burns_code(client, c1, login_token):
    code = _authorize(client, login_token())
    r = _redeem(client, code, client_secret="wrong")
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_client"
    assert _redeem(client, code).json()["error"] == "invalid_grant"


def test_public_client_with_pkce(client, make_client, owner, login_token):
    make_client("pub", None, user_id=owner.id, grant_types="authorization_code")
    verifier = "v" * 64
    challenge = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=").decode()
    code = _authorize(client, login_token(), client_id="pub", code_challenge=challenge, code_challenge_method="S256")

    bad = _redeem(client, code, client_id="pub", client_secret=None, code_verifier="w" * 64)
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_grant"

    code = _authorize(client, login_token(), client_id="pub", code_challenge=challenge, code_challenge_method="S256")
    ok = _redeem(client, code, client_id="pub", client_secret=None, code_verifier=verifier)
    assert ok.status_code == 200, ok.text


def test_revoke_then_introspect(client, c1):
    token = client.post(
        "/oauth/token", data={"grant_type": "client_credentials", "client_id": "c1", "client_secret": "s1"}
    ).json()["access_token"]
    creds = {"client_id": "c1", "client_secret": "s1"}

    active = client.post("/oauth/introspect", data={"token": token, **creds}).json()
    assert active["active"] is True
    assert active["client_id"] == "c1"
    assert active["scope"] == "read write"

    r = client.post("/oauth/revoke", data={"token": token, **creds})
    assert r.status_code == 200
    assert r.json() == {}
    assert client.post("/oauth/introspect", data={"token": token, **creds}).json() == {"active": False}
    # Revoking again is still a success
    assert client.post("/oauth/revoke", data={"token": token, **creds}).status_code == 200


def test_revoke_by_refresh_token(client, c1, login_token):
    code = _authorize(client, login_token())
    body = _redeem(client, code).json()
    creds = {"client_id": "c1", "client_secret": "s1"}
    client.post("/oauth/revoke", data={"token": body["refresh_token"], "token_type_hint": "refresh_token", **creds})
    assert client.post("/oauth/introspect", data={"token": body["access_token"], **creds}).json() == {"active": False}


def test_other_client_cannot_revoke(client, c1, make_client, owner):
    make_client("c2", "s2", user_id=owner.id)
    token = client.post(
        "/oauth/token", data={"grant_type": "client_credentials", "client_id": "c1", "client_secret": "s1"}
    ).json()["access_token"]
    client.post("/oauth/revoke", data={"token": token, "client_id": "c2", "client_secret": "s2"})
    r = client.post("/oauth/introspect", data={"token": token, "client_id": "c1", "client_secret": "s1"})
    assert r.json()["active"] is True


def test_introspect_requires_client_auth(client, c1):
    r = client.post("/oauth/introspect", data={"token": "x", "client_id": "c1", "client_secret": "bad"})
    assert r.status_code == 401


def test_introspect_garbage_is_inactive(client, c1):
    r = client.post("/oauth/introspect", data={"token": "garbage", "client_id": "c1", "client_secret": "s1"})
    assert r.json() == {"active": False}
