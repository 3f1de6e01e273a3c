"""
Pytest configuration for pizza_api. In-memory SQLite and a fixed secret so tests don't touch the filesystem.
"""
import os

# Must be set before pizza_api.main is imported (it builds the default app from env)
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["APP_ENV"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret-0123456789abcdef0123456789abcdef0123456789abcdef"
for _name in ("PIZZA_ADMIN_EMAIL", "PIZZA_ADMIN_PASSWORD", "OAUTH_SEED_CLIENT_ID", "OAUTH_SEED_CLIENT_SECRET"):
    os.environ.pop(_name, None)

import pytest
from fastapi.testclient import TestClient

from pizza_api.config import Settings
from pizza_api.main import create_app
from pizza_api.models import OAuthClient
from pizza_api.security import hash_secret
from pizza_api.stores import SqlCredentialStore

TEST_SECRET = os.environ["JWT_SECRET"]
REDIRECT_URI = "http://127.0.0.1:8000/callback"


@pytest.fixture
def settings():
    return Settings(
        app_env="test",
        database_url="sqlite:///:memory:",
        jwt_secret=TEST_SECRET,
        rate_limit_login_per_minute=0,
        rate_limit_token_per_minute=0,
    )


@pytest.fixture
def app(settings):
    return create_app(settings, seed=False)


@pytest.fixture
def client(app):
    # Context manager runs the lifespan (creates tables)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def store(app, client):
    db = app.state.session_factory()
    try:
        yield SqlCredentialStore(db)
    finally:
        db.close()


@pytest.fixture
def make_user(store):
    def _make(email="u1@example.com", password="password1", role="user", name=None):
        return store.create_user(email, hash_secret(password), name=name, role=role)

    return _make


@pytest.fixture
def make_client(store):
    def _make(
        client_id="c1",
        secret="s1",
        user_id=None,
        scopes="read write",
        grant_types="client_credentials authorization_code",
        redirect_uri=REDIRECT_URI,
    ):
        return store.create_client(
            OAuthClient(
                id=client_id,
                secret_hash=hash_secret(secret) if secret else "",
                name=f"{client_id} app",
                user_id=user_id,
                scopes=scopes,
                grant_types=grant_types,
                redirect_uri=redirect_uri,
            )
        )

    return _make


@pytest.fixture
def login_token(client):
    """Register (if needed) and log in through /auth/login; returns the bearer token."""

    def _login(email="owner@example.com", password="password1"):
        client.post("/auth/register", json={"email": email, "password": password})
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return r.json()["access_token"]

    return _login
