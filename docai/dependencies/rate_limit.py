"""
Rate limit dependency for FastAPI routes.

Runs after authentication: the key combines the route class, the owner
and the client address.
"""
from fastapi import Depends, Request, Response

from docai.dependencies.auth import TokenPayload, get_current_owner
from docai.dependencies.services import get_rate_limiter
from docai.errors import RateLimited
from docai.logging_config import get_logger
from docai.routes.metrics import track_rate_limit_exceeded
from docai.services.rate_limiter import RateLimiter

log = get_logger(component="rate_limit")


def client_address(request: Request) -> str | None:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def rate_limit(route: str):
    """
    Build a dependency enforcing the policy registered for `route`.

    Usage:
        @router.post("/jobs")
        async def upload(owner: TokenPayload = Depends(rate_limit("upload"))):
            ...

    Raises 429 with Retry-After if the window is exhausted; otherwise sets
    X-RateLimit-Remaining on the response.
    """

    async def check_rate_limit(
        request: Request,
        response: Response,
        owner: TokenPayload = Depends(get_current_owner),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> TokenPayload:
        decision = await limiter.check(route, owner.sub, client_address(request))
        if not decision.allowed:
            track_rate_limit_exceeded(route)
            log.info("rate_limit_exceeded", route=route, owner_id=owner.sub, retry_after_ms=decision.retry_after_ms)
            raise RateLimited(decision.retry_after_ms)

        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return owner

    return check_rate_limit
