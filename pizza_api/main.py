"""
Pizza API: pizza CRUD behind local login and an OAuth2 authorization server
(client_credentials and authorization_code grants).
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI

from pizza_api.audit import router as audit_router
from pizza_api.auth_routes import router as auth_router
from pizza_api.authorize import router as authorize_router
from pizza_api.clients import router as clients_router
from pizza_api.codes import AuthorizationCodeService
from pizza_api.config import Settings, configure_logging
from pizza_api.database import create_db_engine, create_session_factory, init_db
from pizza_api.errors import register_error_handlers
from pizza_api.middleware import BearerAuthenticator
from pizza_api.pizzas import router as pizzas_router
from pizza_api.rate_limit import RateLimiter
from pizza_api.seed import seed_from_env
from pizza_api.stores import SqlCredentialStore
from pizza_api.token_endpoint import router as token_router
from pizza_api.token_generator import TokenGenerator
from pizza_api.well_known import router as well_known_router

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, *, seed: bool = True) -> FastAPI:
    """Build the app and its long-lived components; they live on app.state for the dependencies."""
    settings = settings or Settings.from_env()
    configure_logging(settings)
    engine = create_db_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create tables, drop stale codes and seed admin/client from env on startup."""
        init_db(engine)
        db = app.state.session_factory()
        try:
            store = SqlCredentialStore(db)
            store.purge_expired_codes()
            if seed:
                seed_from_env(store)
        finally:
            db.close()
        logger.info("Pizza API started: %r", settings)
        yield
        engine.dispose()

    app = FastAPI(title="Pizza API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.authenticator = BearerAuthenticator(settings.jwt_secret)
    app.state.token_generator = TokenGenerator(
        settings.jwt_secret,
        settings.oauth_token_algorithm,
        access_ttl=settings.access_token_expires,
        refresh_ttl=settings.refresh_token_expires,
    )
    app.state.code_service = AuthorizationCodeService(settings.code_ttl_seconds)
    app.state.rate_limiter = RateLimiter()

    register_error_handlers(app)
    app.include_router(token_router, tags=["oauth"])
    app.include_router(authorize_router, tags=["oauth"])
    app.include_router(well_known_router, tags=["well-known"])
    app.include_router(auth_router, tags=["auth"])
    app.include_router(clients_router)
    app.include_router(pizzas_router)
    app.include_router(audit_router)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "pizza_api",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pizza_api.main:app",
        host="127.0.0.1",
        port=8080,
        reload=True,
    )
