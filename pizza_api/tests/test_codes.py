"""
Tests for authorization code issue/redeem: single use, expiry, client binding, PKCE, concurrent redemption.
"""
import hashlib
import threading
from base64 import urlsafe_b64encode
from datetime import datetime, timedelta, timezone

import pytest

from pizza_api.codes import AuthorizationCodeService
from pizza_api.database import create_db_engine, create_session_factory, init_db
from pizza_api.errors import CodeExpired, InvalidClient, InvalidGrant, InvalidRedirectURI, InvalidScope
from pizza_api.models import OAuthClient
from pizza_api.security import hash_secret
from pizza_api.stores import MemoryCredentialStore, SqlCredentialStore

REDIRECT_URI = "http://127.0.0.1:8000/callback"


@pytest.fixture
def mem_store():
    store = MemoryCredentialStore()
    user = store.create_user("u1@example.com", hash_secret("pw1234"))
    store.create_client(
        OAuthClient(id="c1", secret_hash=hash_secret("s1"), name="c1", user_id=user.id, redirect_uri=REDIRECT_URI,
                    scopes="read write")
    )
    store.create_client(OAuthClient(id="c2", secret_hash=hash_secret("s2"), name="c2", user_id=user.id))
    return store


@pytest.fixture
def service():
    return AuthorizationCodeService()


def test_issue_unknown_client(mem_store, service):
    with pytest.raises(InvalidClient):
        service.issue(mem_store, "nope", 1)


def test_issue_redirect_uri_must_match_exactly(mem_store, service):
    with pytest.raises(InvalidRedirectURI):
        service.issue(mem_store, "c1", 1, redirect_uri=REDIRECT_URI + "/extra")


def test_issue_rejects_unregistered_scope(mem_store, service):
    with pytest.raises(InvalidScope):
        service.issue(mem_store, "c1", 1, scope="read admin")
    with pytest.raises(InvalidScope):
        service.issue(mem_store, "c2", 1, scope="read")


def test_issue_stores_ten_minute_expiry(mem_store, service):
    before = datetime.now(timezone.utc)
    code = service.issue(mem_store, "c1", 1, scope="read")
    record = mem_store.get_code(code)
    assert record.user_id == 1
    assert record.scopes == "read"
    assert record.redirect_uri == REDIRECT_URI
    assert before + timedelta(minutes=10) <= record.expires_at <= datetime.now(timezone.utc) + timedelta(minutes=10)


def test_redeem_once(mem_store, service):
    code = service.issue(mem_store, "c1", 1, scope="read write")
    redeemed = service.redeem(mem_store, code, "c1")
    assert redeemed.user_id == 1
    assert redeemed.scope == "read write"
    with pytest.raises(InvalidGrant):
        service.redeem(mem_store, code, "c1")


def test_redeem_unknown_code(mem_store, service):
    with pytest.raises(InvalidGrant):
        service.redeem(mem_store, "missing", "c1")


def test_redeem_by_other_client_fails_and_keeps_code(mem_store, service):
    code = service.issue(mem_store, "c1", 1)
    with pytest.raises(InvalidGrant):
        service.redeem(mem_store, code, "c2")
    assert service.redeem(mem_store, code, "c1").user_id == 1


def test_expired_code_rejected(mem_store, service):
    code = service.issue(mem_store, "c1", 1)
    mem_store.get_code(code).expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    with pytest.raises(CodeExpired):
        service.redeem(mem_store, code, "c1")


def test_redirect_uri_mismatch_at_redeem(mem_store, service):
    code = service.issue(mem_store, "c1", 1)
    with pytest.raises(InvalidGrant):
        service.redeem(mem_store, code, "c1", redirect_uri="http://evil.example/cb")


def test_pkce_s256(mem_store, service):
    verifier = "a" * 50
    challenge = urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=").decode()
    code = service.issue(mem_store, "c1", 1, code_challenge=challenge, code_challenge_method="S256")
    with pytest.raises(InvalidGrant):
        service.redeem(mem_store, code, "c1", code_verifier="b" * 50)
    with pytest.raises(InvalidGrant):
        service.redeem(mem_store, code, "c1")
    assert service.redeem(mem_store, code, "c1", code_verifier=verifier).user_id == 1


def test_concurrent_redemption_succeeds_once(mem_store, service):
    code = service.issue(mem_store, "c1", 1)
    results = []
    barrier = threading.Barrier(8)

    def attempt():
        barrier.wait()
        try:
            service.redeem(mem_store, code, "c1")
            results.append("ok")
        except InvalidGrant:
            results.append("invalid_grant")

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count("ok") == 1
    assert results.count("invalid_grant") == 7


def test_sql_interleaved_redemption_second_loses(tmp_path, service):
    """Both sessions read the code before either deletes it; only the first delete wins."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'codes.db'}")
    init_db(engine)
    factory = create_session_factory(engine)
    setup = SqlCredentialStore(factory())
    user = setup.create_user("u1@example.com", hash_secret("pw1234"))
    setup.create_client(OAuthClient(id="c1", secret_hash=hash_secret("s1"), name="c1", user_id=user.id))
    code = service.issue(setup, "c1", user.id)
    setup.db.close()

    first, second = SqlCredentialStore(factory()), SqlCredentialStore(factory())
    try:
        assert first.get_code(code) is not None
        assert second.get_code(code) is not None
        assert first.consume_code(code, "c1") is True
        assert second.consume_code(code, "c1") is False
        with pytest.raises(InvalidGrant):
            service.redeem(second, code, "c1")
    finally:
        first.db.close()
        second.db.close()
        engine.dispose()
