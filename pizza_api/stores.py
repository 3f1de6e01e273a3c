"""
Credential store: users, OAuth clients, authorization codes and issued tokens.
CredentialStore is the interface the OAuth core depends on; SqlCredentialStore backs the service,
MemoryCredentialStore backs unit tests.
"""
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pizza_api.errors import ConflictError
from pizza_api.models import AuthorizationCode, OAuthClient, OAuthToken, User, as_utc

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore(ABC):
    # --- users ---

    @abstractmethod
    def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    def create_user(self, email: str, password_hash: str, name: str | None = None, role: str = "user") -> User:
        """Raises ConflictError if the email is taken."""

    @abstractmethod
    def set_user_role(self, user_id: int, role: str) -> bool: ...

    # --- clients ---

    @abstractmethod
    def get_client(self, client_id: str) -> OAuthClient | None:
        """Soft-deleted clients are not returned."""

    @abstractmethod
    def create_client(self, client: OAuthClient) -> OAuthClient: ...

    @abstractmethod
    def list_clients(self, user_id: int) -> list[OAuthClient]: ...

    @abstractmethod
    def delete_client(self, client_id: str, user_id: int) -> bool:
        """Soft-delete a client owned by user_id. False if there was nothing to delete."""

    # --- authorization codes ---

    @abstractmethod
    def create_code(self, code: AuthorizationCode) -> AuthorizationCode: ...

    @abstractmethod
    def get_code(self, code: str) -> AuthorizationCode | None: ...

    @abstractmethod
    def consume_code(self, code: str, client_id: str) -> bool:
        """Delete the code if it still exists for client_id. Exactly one concurrent caller gets True."""

    @abstractmethod
    def purge_expired_codes(self, now: datetime | None = None) -> int: ...

    # --- issued tokens ---

    @abstractmethod
    def create_token(self, token: OAuthToken) -> OAuthToken: ...

    @abstractmethod
    def get_token_by_access(self, access_token: str) -> OAuthToken | None: ...

    @abstractmethod
    def get_token_by_refresh(self, refresh_token: str) -> OAuthToken | None: ...

    @abstractmethod
    def remove_by_access(self, access_token: str) -> bool: ...

    @abstractmethod
    def remove_by_refresh(self, refresh_token: str) -> bool: ...


class SqlCredentialStore(CredentialStore):
    """SQLAlchemy adapter over one request-scoped Session. Every write commits."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == email).first()

    def create_user(self, email: str, password_hash: str, name: str | None = None, role: str = "user") -> User:
        if self.get_user_by_email(email) is not None:
            raise ConflictError(error="user_already_exists")
        user = User(email=email, password_hash=password_hash, name=name, role=role or "user", is_active=True)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(error="user_already_exists") from e
        self.db.refresh(user)
        return user

    def set_user_role(self, user_id: int, role: str) -> bool:
        result = self.db.execute(update(User).where(User.id == user_id).values(role=role, updated_at=_utc_now()))
        self.db.commit()
        return result.rowcount == 1

    def get_client(self, client_id: str) -> OAuthClient | None:
        return (
            self.db.query(OAuthClient)
            .filter(OAuthClient.id == client_id, OAuthClient.deleted_at.is_(None))
            .first()
        )

    def create_client(self, client: OAuthClient) -> OAuthClient:
        # Soft-deleted ids stay taken
        if self.db.get(OAuthClient, client.id) is not None:
            raise ConflictError(error="client_already_exists")
        self.db.add(client)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(error="client_already_exists") from e
        self.db.refresh(client)
        return client

    def list_clients(self, user_id: int) -> list[OAuthClient]:
        return (
            self.db.query(OAuthClient)
            .filter(OAuthClient.user_id == user_id, OAuthClient.deleted_at.is_(None))
            .order_by(OAuthClient.created_at)
            .all()
        )

    def delete_client(self, client_id: str, user_id: int) -> bool:
        result = self.db.execute(
            update(OAuthClient)
            .where(
                OAuthClient.id == client_id,
                OAuthClient.user_id == user_id,
                OAuthClient.deleted_at.is_(None),
            )
            .values(deleted_at=_utc_now())
        )
        self.db.commit()
        return result.rowcount == 1

    def create_code(self, code: AuthorizationCode) -> AuthorizationCode:
        self.db.add(code)
        self.db.commit()
        return code

    def get_code(self, code: str) -> AuthorizationCode | None:
        return self.db.get(AuthorizationCode, code)

    def consume_code(self, code: str, client_id: str) -> bool:
        # Conditional delete: the row count tells whether this caller won the redemption
        deleted = (
            self.db.query(AuthorizationCode)
            .filter(AuthorizationCode.code == code, AuthorizationCode.client_id == client_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted == 1

    def purge_expired_codes(self, now: datetime | None = None) -> int:
        cutoff = (now or _utc_now()).replace(tzinfo=None)
        deleted = (
            self.db.query(AuthorizationCode)
            .filter(AuthorizationCode.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            logger.info("Purged %d expired authorization codes", deleted)
        return deleted

    def create_token(self, token: OAuthToken) -> OAuthToken:
        self.db.add(token)
        self.db.commit()
        return token

    def get_token_by_access(self, access_token: str) -> OAuthToken | None:
        return self.db.query(OAuthToken).filter(OAuthToken.access_token == access_token).first()

    def get_token_by_refresh(self, refresh_token: str) -> OAuthToken | None:
        return self.db.query(OAuthToken).filter(OAuthToken.refresh_token == refresh_token).first()

    def remove_by_access(self, access_token: str) -> bool:
        deleted = (
            self.db.query(OAuthToken)
            .filter(OAuthToken.access_token == access_token)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted > 0

    def remove_by_refresh(self, refresh_token: str) -> bool:
        deleted = (
            self.db.query(OAuthToken)
            .filter(OAuthToken.refresh_token == refresh_token)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted > 0


class MemoryCredentialStore(CredentialStore):
    """In-process store; one lock guards every table."""

    def __init__(self):
        self._lock = threading.Lock()
        self._user_ids = itertools.count(1)
        self._token_ids = itertools.count(1)
        self.users: dict[int, User] = {}
        self.clients: dict[str, OAuthClient] = {}
        self.codes: dict[str, AuthorizationCode] = {}
        self.tokens: dict[str, OAuthToken] = {}

    def get_user(self, user_id: int) -> User | None:
        with self._lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> User | None:
        with self._lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def create_user(self, email: str, password_hash: str, name: str | None = None, role: str = "user") -> User:
        with self._lock:
            if any(u.email == email for u in self.users.values()):
                raise ConflictError(error="user_already_exists")
            now = _utc_now()
            user = User(
                id=next(self._user_ids),
                email=email,
                password_hash=password_hash,
                name=name,
                role=role or "user",
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            return user

    def set_user_role(self, user_id: int, role: str) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return False
            user.role = role
            user.updated_at = _utc_now()
            return True

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            client = self.clients.get(client_id)
            if client is None or client.deleted_at is not None:
                return None
            return client

    def create_client(self, client: OAuthClient) -> OAuthClient:
        with self._lock:
            if client.id in self.clients:
                raise ConflictError(error="client_already_exists")
            now = _utc_now()
            client.created_at = client.created_at or now
            client.updated_at = now
            client.secret_hash = client.secret_hash or ""
            client.scopes = client.scopes or ""
            client.grant_types = client.grant_types or ""
            self.clients[client.id] = client
            return client

    def list_clients(self, user_id: int) -> list[OAuthClient]:
        with self._lock:
            return [c for c in self.clients.values() if c.user_id == user_id and c.deleted_at is None]

    def delete_client(self, client_id: str, user_id: int) -> bool:
        with self._lock:
            client = self.clients.get(client_id)
            if client is None or client.user_id != user_id or client.deleted_at is not None:
                return False
            client.deleted_at = _utc_now()
            return True

    def create_code(self, code: AuthorizationCode) -> AuthorizationCode:
        with self._lock:
            code.created_at = code.created_at or _utc_now()
            self.codes[code.code] = code
            return code

    def get_code(self, code: str) -> AuthorizationCode | None:
        with self._lock:
            return self.codes.get(code)

    def consume_code(self, code: str, client_id: str) -> bool:
        with self._lock:
            record = self.codes.get(code)
            if record is None or record.client_id != client_id:
                return False
            del self.codes[code]
            return True

    def purge_expired_codes(self, now: datetime | None = None) -> int:
        now = now or _utc_now()
        with self._lock:
            expired = [k for k, c in self.codes.items() if as_utc(c.expires_at) < now]
            for key in expired:
                del self.codes[key]
            return len(expired)

    def create_token(self, token: OAuthToken) -> OAuthToken:
        with self._lock:
            if token.access_token in self.tokens:
                raise ConflictError(error="token_already_exists")
            now = _utc_now()
            token.id = next(self._token_ids)
            token.created_at = now
            token.updated_at = now
            self.tokens[token.access_token] = token
            return token

    def get_token_by_access(self, access_token: str) -> OAuthToken | None:
        with self._lock:
            return self.tokens.get(access_token)

    def get_token_by_refresh(self, refresh_token: str) -> OAuthToken | None:
        with self._lock:
            return next((t for t in self.tokens.values() if t.refresh_token == refresh_token), None)

    def remove_by_access(self, access_token: str) -> bool:
        with self._lock:
            return self.tokens.pop(access_token, None) is not None

    def remove_by_refresh(self, refresh_token: str) -> bool:
        with self._lock:
            keys = [k for k, t in self.tokens.items() if t.refresh_token == refresh_token]
            for key in keys:
                del self.tokens[key]
            return bool(keys)
