"""
Local accounts: registration and email/password login issuing a locally-signed JWT
(claims: user, role, iat, exp). The same secret and HMAC family as OAuth2 tokens.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from pizza_api.audit import EVENT_LOGIN_FAIL, EVENT_LOGIN_OK, EVENT_REGISTER, OUTCOME_FAIL, OUTCOME_SUCCESS, get_client_ip, log_audit
from pizza_api.config import Settings
from pizza_api.database import get_store
from pizza_api.errors import APIError
from pizza_api.middleware import AuthContext, require_auth
from pizza_api.models import User
from pizza_api.security import hash_secret, verify_secret
from pizza_api.stores import SqlCredentialStore
from pizza_api.tokens import sign

logger = logging.getLogger(__name__)
router = APIRouter()


class RegisterRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=6, max_length=128)
    name: str | None = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("invalid email address")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str


def issue_login_token(user: User, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "user": user.id,
        "role": user.role or "user",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.login_token_expires)).timestamp()),
    }
    return sign(claims, settings.jwt_secret, settings.login_token_algorithm)


def user_to_dict(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name, "role": user.role}


@router.post("/auth/register", status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    store: SqlCredentialStore = Depends(get_store),
):
    """Create a local account with role 'user'. 409 user_already_exists if the email is taken."""
    user = store.create_user(body.email, hash_secret(body.password), name=body.name)
    log_audit(store.db, EVENT_REGISTER, user_id=user.id, ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
    logger.info("Registered user id=%s", user.id)
    return {"message": "user_created", "id": user.id}


@router.post("/auth/login")
def login(
    request: Request,
    body: LoginRequest,
    store: SqlCredentialStore = Depends(get_store),
):
    """Email/password login. Returns a locally-signed bearer token."""
    settings = request.app.state.settings
    ip = get_client_ip(request)
    request.app.state.rate_limiter.enforce(f"login:{ip}", settings.rate_limit_login_per_minute)

    user = store.get_user_by_email(body.email.strip().lower())
    if user is None or not user.is_active or not verify_secret(body.password, user.password_hash):
        log_audit(store.db, EVENT_LOGIN_FAIL, user_id=None, ip=ip, outcome=OUTCOME_FAIL)
        raise APIError(error="invalid_credentials", status_code=401)

    log_audit(store.db, EVENT_LOGIN_OK, user_id=user.id, ip=ip, outcome=OUTCOME_SUCCESS)
    return {
        "access_token": issue_login_token(user, settings),
        "token_type": "Bearer",
        "expires_in": settings.login_token_expires,
        "user": user_to_dict(user),
    }


@router.get("/api/v1/protected/me")
def me(
    ctx: Annotated[AuthContext, Depends(require_auth)],
    store: SqlCredentialStore = Depends(get_store),
):
    """Caller identity from the auth context, plus the current user record."""
    user = store.get_user(ctx.user_id)
    return {
        "user_id": ctx.user_id,
        "role": ctx.role,
        "auth_type": ctx.auth_type,
        "client_id": ctx.client_id,
        "scopes": sorted(ctx.scopes),
        "user": user_to_dict(user) if user else None,
    }
