"""
Token endpoint (POST /oauth/token): client_credentials and authorization_code grants.
Also revocation (RFC 7009) and introspection (RFC 7662) for issued tokens.
"""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from pizza_api.audit import (
    EVENT_TOKEN_DENIED,
    EVENT_TOKEN_ISSUED,
    EVENT_TOKEN_REVOKED,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
)
from pizza_api.client_auth import authenticate_client, get_client_credentials_from_request, require_grant_type
from pizza_api.database import get_store
from pizza_api.errors import APIError, InvalidClient, InvalidRequest, UnsupportedGrantType
from pizza_api.models import OAuthClient, OAuthToken
from pizza_api.stores import SqlCredentialStore
from pizza_api.token_generator import GeneratedTokens
from pizza_api.tokens import TokenError, verify

logger = logging.getLogger(__name__)
router = APIRouter()

GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_AUTHORIZATION_CODE = "authorization_code"

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _record_token(store: SqlCredentialStore, client: OAuthClient, tokens: GeneratedTokens, user_id: int | None) -> None:
    store.create_token(
        OAuthToken(
            client_id=client.id,
            user_id=user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or None,
            scopes=tokens.scope,
            expires_at=tokens.expires_at,
        )
    )


def _token_response(tokens: GeneratedTokens) -> JSONResponse:
    body = {
        "access_token": tokens.access_token,
        "token_type": "Bearer",
        "expires_in": tokens.expires_in,
        "scope": tokens.scope,
    }
    if tokens.refresh_token:
        body["refresh_token"] = tokens.refresh_token
    return JSONResponse(content=body, headers=_NO_STORE)


@router.post("/oauth/token")
def token(
    request: Request,
    grant_type: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    code_verifier: str | None = Form(None),
    store: SqlCredentialStore = Depends(get_store),
):
    """
    client_credentials: authenticate the client, issue a token for its owning user with its registered scopes.
    authorization_code: redeem the code once, authenticate the client, issue access + refresh tokens.
    """
    settings = request.app.state.settings
    ip = get_client_ip(request)
    request.app.state.rate_limiter.enforce(f"token:{ip}", settings.rate_limit_token_per_minute)

    cid, csecret = get_client_credentials_from_request(request, client_id, client_secret)
    try:
        if grant_type == GRANT_CLIENT_CREDENTIALS:
            client, tokens = _client_credentials(request, store, cid, csecret)
        elif grant_type == GRANT_AUTHORIZATION_CODE:
            client, tokens = _authorization_code(request, store, cid, csecret, code, redirect_uri, code_verifier)
        else:
            raise UnsupportedGrantType()
    except APIError as e:
        log_audit(store.db, EVENT_TOKEN_DENIED, client_id=cid, ip=ip, outcome=OUTCOME_FAIL)
        logger.info("Token request denied: grant_type=%s client_id=%s error=%s", grant_type, cid, e.error)
        raise

    log_audit(store.db, EVENT_TOKEN_ISSUED, client_id=client.id, user_id=tokens.user_id, ip=ip, outcome=OUTCOME_SUCCESS)
    logger.info("%s grant: token issued for client_id=%s uid=%s", grant_type, client.id, tokens.user_id)
    return _token_response(tokens)


def _client_credentials(
    request: Request,
    store: SqlCredentialStore,
    client_id: str | None,
    client_secret: str | None,
) -> tuple[OAuthClient, GeneratedTokens]:
    client = authenticate_client(store, client_id, client_secret)
    require_grant_type(client, GRANT_CLIENT_CREDENTIALS)
    tokens = request.app.state.token_generator.generate(store, client, None, client.scopes, want_refresh=False)
    # No resource owner: the issued-token row carries no user
    _record_token(store, client, tokens, None)
    return client, tokens


def _authorization_code(
    request: Request,
    store: SqlCredentialStore,
    client_id: str | None,
    client_secret: str | None,
    code: str | None,
    redirect_uri: str | None,
    code_verifier: str | None,
) -> tuple[OAuthClient, GeneratedTokens]:
    if not code:
        raise InvalidRequest("code is required for authorization_code grant")
    if not client_id:
        raise InvalidClient("client_id is required")

    redeemed = request.app.state.code_service.redeem(
        store, code, client_id, redirect_uri=redirect_uri, code_verifier=code_verifier
    )
    client = authenticate_client(store, client_id, client_secret, allow_public=True)
    require_grant_type(client, GRANT_AUTHORIZATION_CODE)
    tokens = request.app.state.token_generator.generate(
        store, client, redeemed.user_id, redeemed.scope, want_refresh=True
    )
    _record_token(store, client, tokens, redeemed.user_id)
    return client, tokens


@router.post("/oauth/revoke")
def revoke(
    request: Request,
    token: str = Form(...),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    store: SqlCredentialStore = Depends(get_store),
):
    """
    RFC 7009: revoke an access or refresh token issued to the authenticating client.
    Always 200 for an authenticated client, even if the token is unknown.
    """
    if not token.strip():
        raise InvalidRequest("token is required")
    cid, csecret = get_client_credentials_from_request(request, client_id, client_secret)
    client = authenticate_client(store, cid, csecret, allow_public=True)

    value = token.strip()
    hint = (token_type_hint or "").strip().lower()
    record = None
    if hint in ("", "access_token"):
        record = store.get_token_by_access(value)
    if record is None and hint in ("", "refresh_token"):
        record = store.get_token_by_refresh(value)

    if record is not None and record.client_id == client.id:
        store.remove_by_access(record.access_token)
        log_audit(store.db, EVENT_TOKEN_REVOKED, client_id=client.id, user_id=record.user_id,
                  ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
        logger.debug("Revoked token id=%s for client_id=%s", record.id, client.id)
    return {}


@router.post("/oauth/introspect")
def introspect(
    request: Request,
    token: str = Form(...),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    store: SqlCredentialStore = Depends(get_store),
):
    """RFC 7662: whether an access token is active, and its claims."""
    cid, csecret = get_client_credentials_from_request(request, client_id, client_secret)
    authenticate_client(store, cid, csecret)

    value = token.strip()
    try:
        claims = verify(value, request.app.state.settings.jwt_secret)
    except TokenError:
        return {"active": False}
    if not claims.audience or store.get_token_by_access(value) is None:
        return {"active": False}
    return {
        "active": True,
        "scope": claims.scope or "",
        "client_id": claims.audience,
        "uid": claims.user_id,
        "role": claims.role,
        "exp": claims.expiry,
        "token_type": "Bearer",
    }
