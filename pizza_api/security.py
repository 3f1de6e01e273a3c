"""
Secret hashing (bcrypt) for user passwords and OAuth client secrets, plus random credential generation.
"""
import uuid

import bcrypt


def _encode(secret: str) -> bytes:
    # Bcrypt has a 72-byte limit
    raw = secret.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return raw


def hash_secret(secret: str) -> str:
    return bcrypt.hashpw(_encode(secret), bcrypt.gensalt()).decode("utf-8")


def verify_secret(candidate: str | None, hashed: str | None) -> bool:
    """Constant-time check of candidate against a bcrypt hash. Mismatch or a malformed hash is False, never an error."""
    if not candidate or not hashed:
        return False
    try:
        return bcrypt.checkpw(_encode(candidate), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_client_id() -> str:
    return str(uuid.uuid4())


def generate_client_secret() -> str:
    return str(uuid.uuid4())


def generate_code() -> str:
    """Authorization code: uuid4 carries 122 random bits."""
    return str(uuid.uuid4())
