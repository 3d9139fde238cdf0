"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing and context, and turns any exception
that escapes a route into a generic JSON 500.
"""
import time
import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from docai.routes.metrics import track_request
from docai.sentry_config import capture_exception

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: owner_id, route, method, duration_ms, status to every log.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        request_logger = logger.bind(
            route=request.url.path,
            method=request.method,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            request_logger.error(
                "request_failed",
                owner_id=getattr(request.state, "owner_id", None),
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
                exc_info=e,
            )
            capture_exception(e)
            track_request(request.method, _endpoint(request), 500, duration_ms / 1000)
            return JSONResponse(
                status_code=500,
                content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
            )

        duration_ms = (time.time() - start_time) * 1000

        # owner_id is set by the auth dependency, so read it after the route ran
        request_logger.info(
            "request_completed",
            owner_id=getattr(request.state, "owner_id", None),
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2)
        )
        track_request(request.method, _endpoint(request), response.status_code, duration_ms / 1000)

        return response


def _endpoint(request: Request) -> str:
    """Route template rather than the raw path, to keep metric labels bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"
