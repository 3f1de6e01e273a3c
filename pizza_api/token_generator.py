"""
OAuth2 access/refresh token generation. The role claim is read from the store at issuance time,
never copied from an earlier token, so a demoted user cannot keep an elevated role.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pizza_api.errors import InactiveUser, InternalError, MissingSubject, UnknownUser
from pizza_api.models import OAuthClient
from pizza_api.stores import CredentialStore
from pizza_api.tokens import TokenClaims, sign

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"


@dataclass(frozen=True)
class GeneratedTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    expires_at: datetime
    scope: str
    user_id: int


class TokenGenerator:
    def __init__(self, secret: str, algorithm: str = "HS512", access_ttl: int = 7200, refresh_ttl: int = 259200):
        self.secret = secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def resolve_user_id(self, client: OAuthClient, user_id: int | str | None) -> int:
        """Explicit user (authorization_code) wins; client_credentials falls back to the client's owner."""
        candidate = user_id if user_id not in (None, "") else client.user_id
        if candidate in (None, "", 0):
            raise MissingSubject(f"No user available for client {client.id}")
        try:
            return int(candidate)
        except (TypeError, ValueError) as e:
            raise MissingSubject(f"Invalid user id {candidate!r}") from e

    def fetch_role(self, store: CredentialStore, user_id: int) -> str:
        user = store.get_user(user_id)
        if user is None:
            raise UnknownUser(f"User {user_id} not found")
        if not user.is_active:
            raise InactiveUser(f"User {user_id} is deactivated")
        return user.role or DEFAULT_ROLE

    def generate(
        self,
        store: CredentialStore,
        client: OAuthClient,
        user_id: int | str | None = None,
        scope: str = "",
        want_refresh: bool = False,
    ) -> GeneratedTokens:
        subject = self.resolve_user_id(client, user_id)
        role = self.fetch_role(store, subject)

        now = datetime.now(timezone.utc)
        access_exp = now + timedelta(seconds=self.access_ttl)
        claims = TokenClaims(
            audience=client.id,
            expiry=int(access_exp.timestamp()),
            issued_at=int(now.timestamp()),
            user_id=str(subject),
            role=role,
            scope=scope or None,
            # Unique per issuance so the recorded access token string never collides
            extra={"jti": uuid.uuid4().hex},
        )
        try:
            access_token = sign(claims, self.secret, self.algorithm)
            refresh_token = ""
            if want_refresh:
                refresh_exp = now + timedelta(seconds=self.refresh_ttl)
                refresh_token = sign(
                    {"id": access_token, "exp": int(refresh_exp.timestamp())},
                    self.secret,
                    self.algorithm,
                )
        except ValueError as e:
            raise InternalError("token signing failed") from e

        logger.debug("Generated access token for client_id=%s uid=%s role=%s", client.id, subject, role)
        return GeneratedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl,
            expires_at=access_exp,
            scope=scope or "",
            user_id=subject,
        )
