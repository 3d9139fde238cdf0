"""
Authentication dependencies for FastAPI.

SECURITY: Every job query made for a request MUST include the owner_id
returned here. Failure to do so leaks documents between owners.
"""
import hmac

from fastapi import Depends, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from docai.config import settings
from docai.errors import AuthError
from docai.services.jwt_service import JWTService


# Security scheme; missing credentials are reported as our own 401 body
security = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    """JWT token payload model."""
    sub: str      # owner_id
    email: str | None = None


async def get_current_owner(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenPayload:
    """
    Dependency that requires a valid bearer token.

    Stores the owner id on request.state for logging and rate limiting.

    Usage:
        @router.get("/jobs")
        async def list_jobs(owner: TokenPayload = Depends(get_current_owner)):
            ...
    """
    if credentials is None:
        raise AuthError("Missing bearer token")

    payload = JWTService().verify_token(credentials.credentials)
    if payload is None:
        raise AuthError("Invalid or expired token")

    token = TokenPayload(**payload)
    request.state.owner_id = token.sub
    return token


async def verify_dispatch_secret(
    x_dispatch_secret: str | None = Header(None),
) -> None:
    """Server-to-server check for the internal dispatch trigger."""
    if not x_dispatch_secret or not hmac.compare_digest(
        x_dispatch_secret.encode(), settings.DISPATCH_SECRET.encode()
    ):
        raise AuthError("Invalid dispatch secret")
