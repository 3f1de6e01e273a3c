"""
Bearer authentication for protected routes. Two token kinds share the server secret and the HMAC family:

- OAuth2-issued access tokens (token endpoint): aud=<client_id>, uid (or sub), role, scope.
- Locally-issued login tokens (/auth/login, /login): user=<numeric id>, role.

A token is classified by its claim shape: OAuth2 first, then local. Anything else is 401 invalid_token.
"""
import logging
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends, Request

from pizza_api.database import get_store
from pizza_api.errors import APIError
from pizza_api.stores import CredentialStore
from pizza_api.tokens import TokenClaims, TokenError, verify

logger = logging.getLogger(__name__)

AUTH_OAUTH2 = "oauth2"
AUTH_LOCAL = "jwt"

# Cookie set by the interactive /login form
SESSION_COOKIE = "access_token"


class AuthenticationError(APIError):
    error = "invalid_token"
    status_code = 401

    def __init__(self, error: str = "invalid_token"):
        super().__init__(error=error, headers={"WWW-Authenticate": "Bearer"})


@dataclass
class AuthContext:
    user_id: int
    role: str | None
    auth_type: str
    client_id: str | None = None
    scopes: set[str] = field(default_factory=set)

    @property
    def is_oauth2(self) -> bool:
        return self.auth_type == AUTH_OAUTH2


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


class BearerAuthenticator:
    def __init__(self, secret: str):
        self._secret = secret

    def authenticate(self, token: str, store: CredentialStore | None = None) -> AuthContext:
        """Verify token and build the auth context. With a store, OAuth2 tokens must still be recorded (not revoked)."""
        try:
            claims = verify(token, self._secret)
        except TokenError as e:
            logger.debug("Bearer token rejected: %s", type(e).__name__)
            raise AuthenticationError() from e

        ctx = self._as_oauth2(claims, token, store)
        if ctx is None:
            ctx = self._as_local(claims)
        if ctx is None:
            logger.debug("Bearer token has neither OAuth2 nor login claim shape")
            raise AuthenticationError()
        return ctx

    def _as_oauth2(self, claims: TokenClaims, token: str, store: CredentialStore | None) -> AuthContext | None:
        if not claims.audience:
            return None
        user_id = _positive_int(claims.user_id if claims.user_id is not None else claims.subject)
        if user_id is None:
            return None
        if store is not None and store.get_token_by_access(token) is None:
            logger.debug("OAuth2 token for client_id=%s is revoked or unknown", claims.audience)
            return None
        return AuthContext(
            user_id=user_id,
            role=claims.role or None,
            auth_type=AUTH_OAUTH2,
            client_id=claims.audience,
            scopes=claims.scopes,
        )

    def _as_local(self, claims: TokenClaims) -> AuthContext | None:
        user_id = _positive_int(claims.user)
        if user_id is None or not isinstance(claims.role, str) or not claims.role:
            return None
        return AuthContext(user_id=user_id, role=claims.role, auth_type=AUTH_LOCAL)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise AuthenticationError("authorization_header_required")
    if not header.startswith("Bearer "):
        raise AuthenticationError("invalid_authorization_header_format")
    token = header[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError()
    return token


def require_auth(
    request: Request,
    store: Annotated[CredentialStore, Depends(get_store)],
) -> AuthContext:
    """Dependency: authenticated caller or 401. The handler never runs on failure."""
    token = _bearer_token(request)
    ctx = request.app.state.authenticator.authenticate(token, store)
    request.state.auth = ctx
    return ctx


def optional_auth(
    request: Request,
    store: Annotated[CredentialStore, Depends(get_store)],
) -> AuthContext | None:
    """Dependency: caller identity from the Authorization header or the login cookie, or None."""
    header = request.headers.get("Authorization")
    if header and header.startswith("Bearer "):
        token = header[len("Bearer "):].strip()
    else:
        token = request.cookies.get(SESSION_COOKIE, "")
    if not token:
        return None
    try:
        ctx = request.app.state.authenticator.authenticate(token, store)
    except AuthenticationError:
        return None
    request.state.auth = ctx
    return ctx


def require_role(required: str):
    """Dependency factory: require the given role in the auth context."""

    def _check(ctx: Annotated[AuthContext, Depends(require_auth)]) -> AuthContext:
        if ctx.role != required:
            raise APIError(
                error="insufficient_permissions",
                status_code=403,
                extra={"required_role": required},
            )
        return ctx

    return Depends(_check)


RequireAdmin = require_role("admin")
