"""
Client authentication for the token, revoke and introspect endpoints (RFC 6749 §2.3.1).
A client identifies itself with form fields or with HTTP Basic; form fields win when both are sent.
"""
import base64
import binascii
import logging
from urllib.parse import unquote_plus

from fastapi import Request

from pizza_api.errors import InvalidClient, UnauthorizedClient
from pizza_api.models import OAuthClient
from pizza_api.security import verify_secret
from pizza_api.stores import CredentialStore

logger = logging.getLogger(__name__)


def parse_basic_credentials(authorization: str | None) -> tuple[str, str] | None:
    """(client_id, client_secret) from an HTTP Basic header, or None when absent or unparsable."""
    scheme, _, param = (authorization or "").strip().partition(" ")
    if scheme.lower() != "basic" or not param:
        return None
    try:
        raw = base64.b64decode(param.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, sep, password = raw.partition(":")
    if not sep:
        return None
    # Both halves are form-urlencoded before base64
    return unquote_plus(user).strip(), unquote_plus(password)


def get_client_credentials_from_request(
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> tuple[str | None, str | None]:
    form_id = (client_id_form or "").strip() or None
    if form_id and client_secret_form is not None:
        return form_id, client_secret_form
    basic = parse_basic_credentials(request.headers.get("Authorization"))
    if basic is not None:
        return basic
    # Public clients send only client_id
    return form_id, client_secret_form


def authenticate_client(
    store: CredentialStore,
    client_id: str | None,
    client_secret: str | None,
    *,
    allow_public: bool = False,
) -> OAuthClient:
    """
    Load the client and verify its secret against the stored hash. Public clients (empty secret)
    pass only when allow_public is set. Any failure is 401 invalid_client.
    """
    if not client_id:
        raise InvalidClient("client_id is required")
    client = store.get_client(client_id)
    if client is None:
        logger.info("Client authentication failed: unknown client_id=%s", client_id)
        raise InvalidClient("Unknown client")
    if client.is_public:
        if allow_public:
            return client
        logger.info("Client authentication failed: public client_id=%s", client_id)
        raise InvalidClient("Public clients cannot authenticate")
    if not verify_secret(client_secret, client.secret_hash):
        logger.info("Client authentication failed: bad secret for client_id=%s", client_id)
        raise InvalidClient("Invalid client credentials")
    return client


def require_grant_type(client: OAuthClient, grant_type: str) -> None:
    """Clients registered with an explicit grant list may only use those grants."""
    allowed = (client.grant_types or "").split()
    if allowed and grant_type not in allowed:
        raise UnauthorizedClient(f"{grant_type} not allowed for client {client.id}")
