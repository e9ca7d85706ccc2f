"""
Request/response logging middleware.
"""
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from vidstream.core.logging import (
    generate_request_id,
    set_request_id,
    log_event
)

# Polled by players and job watchers; logged at DEBUG only
_QUIET_PREFIXES = ("/static/", "/lazy-static/", "/health", "/api/jobs/")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to track request IDs and log all requests/responses."""

    async def dispatch(self, request: Request, call_next):
        """Process each request and log it."""
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        start_time = time.time()
        level = "DEBUG" if request.url.path.startswith(_QUIET_PREFIXES) else "INFO"

        log_event(
            level=level,
            logger=__name__,
            function="dispatch",
            operation="http_request",
            event="request_received",
            message=f"Request received: {request.method} {request.url.path}",
            context={
                "method": request.method,
                "path": request.url.path,
                "query_params": dict(request.query_params),
                "client_host": request.client.host if request.client else None,
                "user_agent": request.headers.get("user-agent"),
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            # Always log errors, even for quiet paths
            log_event(
                level="ERROR",
                logger=__name__,
                function="dispatch",
                operation="http_request",
                event="request_error",
                message=f"Request error: {request.method} {request.url.path}",
                context={
                    "duration_seconds": time.time() - start_time,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=e
            )
            raise

        log_event(
            level=level,
            logger=__name__,
            function="dispatch",
            operation="http_request",
            event="response_sent",
            message=f"Response sent: {request.method} {request.url.path}",
            context={
                "status_code": response.status_code,
                "duration_seconds": time.time() - start_time,
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response
