"""
Error taxonomy and the JSON error handler.
Every APIError is rendered as {"error": <code>} (plus explicit extra fields); internal detail never reaches the client.
RFC 6749 §5.2 error codes are used on the OAuth endpoints.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    error = "server_error"
    status_code = 500

    def __init__(self, message: str | None = None, *, error: str | None = None, status_code: int | None = None,
                 extra: dict | None = None, headers: dict | None = None):
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}
        self.headers = headers
        super().__init__(message or self.error)

    def body(self) -> dict:
        return {"error": self.error, **self.extra}


class ClientError(APIError):
    """Malformed or unauthenticated request."""
    error = "invalid_request"
    status_code = 400


class NotFoundError(APIError):
    error = "not_found"
    status_code = 404


class ConflictError(APIError):
    error = "conflict"
    status_code = 409


class ExpiredError(APIError):
    error = "expired"
    status_code = 400


class InternalError(APIError):
    """Store or signing failure. The cause is logged, never returned."""
    error = "server_error"
    status_code = 500


# --- OAuth2 (RFC 6749) ---


class InvalidRequest(ClientError):
    error = "invalid_request"


class InvalidClient(ClientError):
    error = "invalid_client"
    status_code = 401


class InvalidGrant(ClientError):
    error = "invalid_grant"


class InvalidRedirectURI(ClientError):
    error = "invalid_redirect_uri"


class InvalidScope(ClientError):
    """The requested scope is not registered on the client."""
    error = "invalid_scope"


class UnsupportedGrantType(ClientError):
    error = "unsupported_grant_type"


class UnauthorizedClient(ClientError):
    """The client is not registered for the requested grant type."""
    error = "unauthorized_client"


class CodeExpired(ExpiredError):
    error = "code_expired"


class MissingSubject(InternalError):
    """Neither the grant nor the client supplies a user to issue the token for."""


class UnknownUser(InternalError):
    """The token subject has no user record."""


class InactiveUser(InvalidGrant):
    """The token subject exists but has been deactivated."""


def _api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    else:
        logger.debug("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.error)
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=exc.headers)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug("%s %s -> 400 invalid_request: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": "invalid_request"})


def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "server_error"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
