"""
Global exception handlers.

- ContentError -> its own status and JSON envelope
- Exception (catch-all) -> 500, never leaks internal details
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from blogrepo.errors import ContentError, StorageFailureError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(ContentError)
    async def content_error_handler(request: Request, exc: ContentError):
        if isinstance(exc, StorageFailureError):
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )
