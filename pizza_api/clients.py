"""
OAuth client registration, scoped to the authenticated owner. The plain secret is returned once, at creation.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from pizza_api.audit import EVENT_CLIENT_CREATED, EVENT_CLIENT_DELETED, OUTCOME_SUCCESS, get_client_ip, log_audit
from pizza_api.database import get_store
from pizza_api.errors import APIError, InvalidRequest
from pizza_api.middleware import AuthContext, require_auth
from pizza_api.models import OAuthClient
from pizza_api.security import generate_client_id, generate_client_secret, hash_secret
from pizza_api.stores import SqlCredentialStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/protected/clients", tags=["clients"])

SUPPORTED_GRANT_TYPES = {"client_credentials", "authorization_code"}


class CreateClientRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    domain: str | None = None
    scopes: str = ""
    grant_types: str = ""
    redirect_uri: str | None = None
    public: bool = False


@router.post("", status_code=201)
def create_client(
    request: Request,
    body: CreateClientRequest,
    ctx: Annotated[AuthContext, Depends(require_auth)],
    store: SqlCredentialStore = Depends(get_store),
):
    grant_types = body.grant_types.split()
    unknown = set(grant_types) - SUPPORTED_GRANT_TYPES
    if unknown:
        raise InvalidRequest(f"Unsupported grant type(s): {', '.join(sorted(unknown))}")
    if body.public and "client_credentials" in grant_types:
        raise InvalidRequest("Public clients cannot use client_credentials")

    secret = "" if body.public else generate_client_secret()
    client = store.create_client(
        OAuthClient(
            id=generate_client_id(),
            secret_hash=hash_secret(secret) if secret else "",
            name=body.name,
            domain=body.domain,
            user_id=ctx.user_id,
            scopes=" ".join(body.scopes.split()),
            grant_types=" ".join(grant_types),
            redirect_uri=body.redirect_uri,
        )
    )
    log_audit(store.db, EVENT_CLIENT_CREATED, client_id=client.id, user_id=ctx.user_id,
              ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
    logger.info("Client created: client_id=%s owner=%s public=%s", client.id, ctx.user_id, body.public)

    result = client.to_dict()
    # Only time the plain secret leaves the server
    result["client_secret"] = secret
    return result


@router.get("")
def list_clients(
    ctx: Annotated[AuthContext, Depends(require_auth)],
    store: SqlCredentialStore = Depends(get_store),
):
    return [c.to_dict() for c in store.list_clients(ctx.user_id)]


@router.delete("/{client_id}", status_code=204)
def delete_client(
    client_id: str,
    request: Request,
    ctx: Annotated[AuthContext, Depends(require_auth)],
    store: SqlCredentialStore = Depends(get_store),
):
    if not store.delete_client(client_id, ctx.user_id):
        raise APIError(error="client_not_found", status_code=404)
    log_audit(store.db, EVENT_CLIENT_DELETED, client_id=client_id, user_id=ctx.user_id,
              ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
    return Response(status_code=204)
