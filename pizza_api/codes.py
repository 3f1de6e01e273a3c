"""
Authorization codes: issue short-lived single-use codes, redeem them exactly once.
"""
import hashlib
import hmac
import logging
from base64 import urlsafe_b64encode
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pizza_api.errors import (
    CodeExpired,
    InvalidClient,
    InvalidGrant,
    InvalidRedirectURI,
    InvalidRequest,
    InvalidScope,
)
from pizza_api.models import AuthorizationCode, OAuthClient, as_utc
from pizza_api.security import generate_code
from pizza_api.stores import CredentialStore

logger = logging.getLogger(__name__)

CODE_TTL_SECONDS = 600
PKCE_METHODS = ("S256", "plain")


@dataclass(frozen=True)
class RedeemedCode:
    user_id: int
    scope: str
    redirect_uri: str | None


def _pkce_verify(code_verifier: str, code_challenge: str, method: str | None) -> bool:
    """S256: base64url(SHA256(verifier)) == challenge; plain: verifier == challenge."""
    if method in (None, "", "plain"):
        computed = code_verifier
    elif method == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        computed = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    else:
        return False
    return hmac.compare_digest(computed, code_challenge)


def check_scope(client: OAuthClient, scope: str | None) -> str:
    """Normalised scope string; every requested scope must be one the client is registered for."""
    requested = list(dict.fromkeys((scope or "").split()))
    unknown = set(requested) - set((client.scopes or "").split())
    if unknown:
        raise InvalidScope(f"Scope not allowed for client {client.id}: {' '.join(sorted(unknown))}")
    return " ".join(requested)


class AuthorizationCodeService:
    def __init__(self, ttl_seconds: int = CODE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds

    def issue(
        self,
        store: CredentialStore,
        client_id: str,
        user_id: int,
        scope: str = "",
        redirect_uri: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
    ) -> str:
        client = store.get_client(client_id)
        if client is None:
            raise InvalidClient(status_code=400)
        # Exact match only: no prefix or wildcard matching
        if redirect_uri and redirect_uri != client.redirect_uri:
            raise InvalidRedirectURI()
        if code_challenge_method and code_challenge_method not in PKCE_METHODS:
            raise InvalidRequest("code_challenge_method must be S256 or plain")
        scope = check_scope(client, scope)

        code = generate_code()
        store.create_code(
            AuthorizationCode(
                code=code,
                client_id=client_id,
                user_id=user_id,
                scopes=scope,
                redirect_uri=redirect_uri or client.redirect_uri,
                code_challenge=code_challenge or None,
                code_challenge_method=(code_challenge_method or "plain") if code_challenge else None,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds),
            )
        )
        logger.info("Authorization code issued for client_id=%s user_id=%s", client_id, user_id)
        return code

    def redeem(
        self,
        store: CredentialStore,
        code: str,
        client_id: str,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> RedeemedCode:
        """Validate and consume code. Raises InvalidGrant or CodeExpired."""
        record = store.get_code(code)
        if record is None:
            raise InvalidGrant("Unknown or already used authorization code")
        if datetime.now(timezone.utc) > as_utc(record.expires_at):
            raise CodeExpired()
        if record.client_id != client_id:
            raise InvalidGrant("Client mismatch")
        if redirect_uri and record.redirect_uri and redirect_uri != record.redirect_uri:
            raise InvalidGrant("redirect_uri mismatch")
        if record.code_challenge:
            if not code_verifier or not _pkce_verify(code_verifier, record.code_challenge, record.code_challenge_method):
                raise InvalidGrant("PKCE verification failed")

        if not store.consume_code(code, client_id):
            # Another redeemer deleted it between our read and our delete
            logger.warning("Concurrent redemption lost for client_id=%s", client_id)
            raise InvalidGrant("Authorization code already used")
        return RedeemedCode(user_id=record.user_id, scope=record.scopes or "", redirect_uri=record.redirect_uri)
