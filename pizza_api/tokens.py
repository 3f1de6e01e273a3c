"""
JWT signing and verification (HMAC family only) and the typed claim set the service reads.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

import jwt

logger = logging.getLogger(__name__)

# Verification accepts only these; a token announcing any other alg (none, RS256, ...) is rejected
HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")

_KNOWN_CLAIMS = {"sub", "uid", "user", "aud", "role", "scope", "exp", "iat"}


class TokenError(Exception):
    pass


class InvalidSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class MalformedToken(TokenError):
    pass


@dataclass
class TokenClaims:
    subject: str | None = None      # sub
    user_id: str | None = None      # uid (OAuth2-issued tokens)
    user: Any = None                # user (locally-issued login tokens)
    audience: str | None = None     # aud
    role: str | None = None
    scope: str | None = None
    expiry: int | None = None       # exp, seconds since epoch
    issued_at: int | None = None    # iat
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: dict[str, Any]) -> "TokenClaims":
        aud = payload.get("aud")
        if isinstance(aud, list):
            aud = aud[0] if aud else None
        uid = payload.get("uid")
        # JSON numbers may arrive as 5.0
        if isinstance(uid, float) and uid.is_integer():
            uid = int(uid)
        return cls(
            subject=payload.get("sub"),
            user_id=str(uid) if uid is not None else None,
            user=payload.get("user"),
            audience=aud,
            role=payload.get("role"),
            scope=payload.get("scope"),
            expiry=payload.get("exp"),
            issued_at=payload.get("iat"),
            extra={k: v for k, v in payload.items() if k not in _KNOWN_CLAIMS},
        )

    def to_mapping(self) -> dict[str, Any]:
        payload = dict(self.extra)
        for key, value in (
            ("sub", self.subject),
            ("uid", self.user_id),
            ("user", self.user),
            ("aud", self.audience),
            ("role", self.role),
            ("scope", self.scope),
            ("exp", self.expiry),
            ("iat", self.issued_at),
        ):
            if value is not None and value != "":
                payload[key] = value
        return payload

    @property
    def scopes(self) -> set[str]:
        return set((self.scope or "").split())


def sign(claims: TokenClaims | dict[str, Any], secret: str, algorithm: str = "HS256") -> str:
    if algorithm not in HMAC_ALGORITHMS:
        raise ValueError(f"Unsupported signing algorithm {algorithm!r}; expected one of {HMAC_ALGORITHMS}")
    payload = claims.to_mapping() if isinstance(claims, TokenClaims) else dict(claims)
    token = jwt.encode(payload, secret, algorithm=algorithm, headers={"typ": "JWT"})
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token


def verify(token: str, secret: str) -> TokenClaims:
    """
    Verify signature, algorithm family and time claims (exp, nbf, iat). Audience is left to the caller.
    Raises TokenExpired, InvalidSignature or MalformedToken.
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=list(HMAC_ALGORITHMS),
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpired("Token has expired") from e
    except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as e:
        raise InvalidSignature(str(e)) from e
    except jwt.InvalidTokenError as e:
        raise MalformedToken(str(e)) from e
    if not isinstance(payload, dict):
        raise MalformedToken("Token payload is not a JSON object")
    return TokenClaims.from_mapping(payload)
