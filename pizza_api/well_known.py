"""
Authorization server metadata (RFC 8414).
"""
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/.well-known/oauth-authorization-server")
def authorization_server_metadata(request: Request):
    """Endpoints and capabilities, relative to the URL the caller reached us on."""
    base = str(request.base_url).rstrip("/")
    return {
        "issuer": base,
        "authorization_endpoint": f"{base}/oauth/authorize",
        "token_endpoint": f"{base}/oauth/token",
        "revocation_endpoint": f"{base}/oauth/revoke",
        "introspection_endpoint": f"{base}/oauth/introspect",
        "response_types_supported": ["code"],
        "grant_types_supported": ["client_credentials", "authorization_code"],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic", "none"],
        "code_challenge_methods_supported": ["S256", "plain"],
    }
