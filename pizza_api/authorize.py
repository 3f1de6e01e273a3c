"""
Authorization endpoint (GET /oauth/authorize) and the interactive login that precedes it.
An unauthenticated resource owner is sent to /login?redirect=<original request>; after login the
browser comes back with a session cookie and the code is issued.
"""
import html
import logging
from typing import Annotated
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from pizza_api.audit import (
    EVENT_CODE_ISSUED,
    EVENT_LOGIN_FAIL,
    EVENT_LOGIN_OK,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
)
from pizza_api.auth_routes import issue_login_token
from pizza_api.codes import check_scope
from pizza_api.database import get_store
from pizza_api.errors import InvalidClient, InvalidRedirectURI
from pizza_api.middleware import AUTH_LOCAL, SESSION_COOKIE, AuthContext, optional_auth
from pizza_api.security import verify_secret
from pizza_api.stores import SqlCredentialStore

logger = logging.getLogger(__name__)
router = APIRouter()


def _append_query(url: str, params: dict[str, str]) -> str:
    """Add params to url, keeping any query string it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def _safe_local_target(target: str | None) -> str:
    """Only same-site paths are valid post-login targets; anything else goes home."""
    if not target or not target.startswith("/") or target.startswith("//") or "\\" in target:
        return "/"
    return target


@router.get("/oauth/authorize")
def authorize(
    request: Request,
    ctx: Annotated[AuthContext | None, Depends(optional_auth)],
    store: SqlCredentialStore = Depends(get_store),
    client_id: str | None = None,
    redirect_uri: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
):
    """
    Validate client_id, redirect_uri (exact match) and scope, then require a resource owner who
    logged in here: the login cookie or a login token. OAuth2 access tokens are sent to the login page.
    Redirects to redirect_uri?code=...&state=... (state only when supplied).
    """
    client = store.get_client(client_id) if client_id else None
    if client is None:
        raise InvalidClient(status_code=400)
    if redirect_uri and redirect_uri != client.redirect_uri:
        raise InvalidRedirectURI()
    target = redirect_uri or client.redirect_uri
    if not target:
        raise InvalidRedirectURI()
    scope = check_scope(client, scope)

    if ctx is None or ctx.auth_type != AUTH_LOCAL:
        original = request.url.path
        if request.url.query:
            original = f"{original}?{request.url.query}"
        login_url = request.app.state.settings.login_url
        return RedirectResponse(url=f"{login_url}?redirect={quote(original, safe='')}", status_code=302)

    code = request.app.state.code_service.issue(
        store,
        client.id,
        ctx.user_id,
        scope=scope,
        redirect_uri=target,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )
    log_audit(store.db, EVENT_CODE_ISSUED, client_id=client.id, user_id=ctx.user_id,
              ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)

    params = {"code": code}
    if state:
        params["state"] = state
    return RedirectResponse(url=_append_query(target, params), status_code=302)


_LOGIN_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>Pizza API sign in</title></head>
<body>
  <h1>Sign in to Pizza API</h1>
  {error}
  <form method="post" action="/login">
    <input type="hidden" name="redirect" value="{redirect}"/>
    <p><label for="email">Email</label> <input id="email" type="email" name="email" value="{email}" required/></p>
    <p><label for="password">Password</label> <input id="password" type="password" name="password" required/></p>
    <p><button type="submit">Sign in</button></p>
  </form>
</body>
</html>"""


def _login_page(redirect: str, email: str = "", error: str | None = None) -> str:
    return _LOGIN_PAGE.format(
        redirect=html.escape(redirect),
        email=html.escape(email),
        error=f'<p role="alert">{html.escape(error)}</p>' if error else "",
    )


@router.get("/login", response_class=HTMLResponse)
def login_form(redirect: str | None = None):
    """Login form for the interactive authorize flow."""
    return HTMLResponse(_login_page(_safe_local_target(redirect)))


@router.post("/login")
def login_submit(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    redirect: str = Form("/"),
    store: SqlCredentialStore = Depends(get_store),
):
    """Check credentials; on success set the session cookie and go back to the redirect target."""
    settings = request.app.state.settings
    ip = get_client_ip(request)
    request.app.state.rate_limiter.enforce(f"login:{ip}", settings.rate_limit_login_per_minute)
    target = _safe_local_target(redirect)

    user = store.get_user_by_email(email.strip().lower())
    if user is None or not user.is_active or not verify_secret(password, user.password_hash):
        log_audit(store.db, EVENT_LOGIN_FAIL, user_id=None, ip=ip, outcome=OUTCOME_FAIL)
        return HTMLResponse(_login_page(target, email, "Invalid email or password."), status_code=401)

    log_audit(store.db, EVENT_LOGIN_OK, user_id=user.id, ip=ip, outcome=OUTCOME_SUCCESS)
    token = issue_login_token(user, settings)
    response = RedirectResponse(url=target, status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.login_token_expires,
        httponly=True,
        samesite="lax",
        secure=settings.app_env == "production",
    )
    return response
