"""
Pizza API configuration. All values come from the environment; defaults suit local development.
No secrets in this file: JWT_SECRET must be provided outside development.
"""
import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "dev-only-jwt-secret-change-me-before-deploying-this-service-anywhere-0000"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Environment variable %s is not an integer (%r); using %s", name, raw, default)
        return default


def mask_database_url(url: str) -> str:
    """Replace the password in a database URL with [REDACTED]."""
    if not url:
        return ""
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = parts.netloc.replace(f":{parts.password}@", ":[REDACTED]@", 1)
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    log_level: str = ""
    database_url: str = "sqlite:///./pizza_api.db"
    jwt_secret: str = field(default=DEV_JWT_SECRET, repr=False)

    # OAuth2 access tokens and local login tokens share the secret and the HMAC family
    oauth_token_algorithm: str = "HS512"
    login_token_algorithm: str = "HS256"

    # Lifetimes (seconds)
    access_token_expires: int = 7200
    refresh_token_expires: int = 259200
    login_token_expires: int = 86400
    code_ttl_seconds: int = 600

    # Per-IP, per minute
    rate_limit_login_per_minute: int = 20
    rate_limit_token_per_minute: int = 60

    # Interactive authorize flow sends unauthenticated resource owners here
    login_url: str = "/login"

    @classmethod
    def from_env(cls) -> "Settings":
        app_env = os.environ.get("APP_ENV", "development").strip().lower() or "development"
        secret = os.environ.get("JWT_SECRET", "")
        if not secret:
            if app_env != "development":
                raise RuntimeError("JWT_SECRET environment variable is required outside development")
            logger.warning("JWT_SECRET not set, using the development secret")
            secret = DEV_JWT_SECRET
        return cls(
            app_env=app_env,
            log_level=os.environ.get("LOG_LEVEL", "").strip().upper(),
            database_url=os.environ.get("DATABASE_URL", "sqlite:///./pizza_api.db"),
            jwt_secret=secret,
            oauth_token_algorithm=os.environ.get("OAUTH_TOKEN_ALGORITHM", "HS512"),
            login_token_algorithm=os.environ.get("LOGIN_TOKEN_ALGORITHM", "HS256"),
            access_token_expires=_env_int("ACCESS_TOKEN_EXPIRES", 7200),
            refresh_token_expires=_env_int("REFRESH_TOKEN_EXPIRES", 259200),
            login_token_expires=_env_int("LOGIN_TOKEN_EXPIRES", 86400),
            code_ttl_seconds=_env_int("CODE_TTL_SECONDS", 600),
            rate_limit_login_per_minute=_env_int("RATE_LIMIT_LOGIN_PER_MINUTE", 20),
            rate_limit_token_per_minute=_env_int("RATE_LIMIT_TOKEN_PER_MINUTE", 60),
            login_url=os.environ.get("LOGIN_URL", "/login"),
        )

    def __repr__(self) -> str:
        return (
            f"Settings(app_env={self.app_env!r}, database_url={mask_database_url(self.database_url)!r}, "
            f"jwt_secret='[REDACTED]', oauth_token_algorithm={self.oauth_token_algorithm!r}, "
            f"access_token_expires={self.access_token_expires}, code_ttl_seconds={self.code_ttl_seconds})"
        )


def configure_logging(settings: Settings) -> None:
    """Set the root log level: LOG_LEVEL wins, otherwise development=DEBUG, production=ERROR, else INFO."""
    if settings.log_level:
        level = getattr(logging, settings.log_level, logging.INFO)
    elif settings.app_env == "development":
        level = logging.DEBUG
    elif settings.app_env == "production":
        level = logging.ERROR
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(level)
