"""
Error handling middleware that converts exceptions to HTTP responses.
"""
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from vidstream.core.exceptions import VidstreamException
import logging

logger = logging.getLogger(__name__)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware to convert exceptions to appropriate HTTP responses."""

    async def dispatch(self, request: Request, call_next):
        """Process each request and handle exceptions."""
        try:
            response = await call_next(request)
            return response

        except VidstreamException as e:
            level = logging.ERROR if e.status_code >= 500 else logging.WARNING
            logger.log(
                level,
                f"Application error: {e.message}",
                extra={
                    "context": {
                        "status_code": e.status_code,
                        "error_type": type(e).__name__,
                        "path": request.url.path,
                        "method": request.method,
                    }
                }
            )

            return JSONResponse(
                status_code=e.status_code,
                content={
                    "error": e.message,
                    "error_type": type(e).__name__,
                    "status_code": e.status_code
                }
            )

        except Exception as e:
            logger.error(
                f"Unexpected error: {str(e)}",
                exc_info=True,
                extra={
                    "context": {
                        "path": request.url.path,
                        "method": request.method,
                    }
                }
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "detail": str(e),
                    "status_code": 500
                }
            )
