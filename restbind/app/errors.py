"""
Error Handlers: global exception handlers for restbind applications.

Handlers answer RestBindErrors themselves; these cover errors raised
outside a handler pipeline (middleware, custom routes) and anything
that is not a RestBindError.

Mapping:
    - RestBindError -> its own status and body
    - RequestValidationError -> 400 with field-level details
    - Exception (catch-all) -> 500, never leaks internal details
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from restbind.errors import RestBindError, translate_error
from restbind.pipeline import encode_body

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_restbind_error_handler(app)
    _register_validation_error_handler(app)
    _register_generic_error_handler(app)


def _register_restbind_error_handler(app: FastAPI) -> None:
    """Register the restbind error handler."""

    @app.exception_handler(RestBindError)
    async def restbind_error_handler(request: Request, exc: RestBindError):
        """Handle all restbind client errors."""
        logger.warning(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
        )
        return JSONResponse(
            status_code=exc.http_status, content=encode_body(exc.to_response()),
        )


def _register_validation_error_handler(app: FastAPI) -> None:
    """Register request validation error handler."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError,
    ):
        """Handle FastAPI request validation errors."""
        logger.warning(
            f"Validation error on {request.url.path}: {exc.errors()}",
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_build_validation_error_response(exc),
        )


def _register_generic_error_handler(app: FastAPI) -> None:
    """Register catch-all error handler."""

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all. Persistence validation failures still become 400s."""
        translated = translate_error(exc)
        if isinstance(translated, RestBindError):
            return JSONResponse(
                status_code=translated.http_status,
                content=encode_body(translated.to_response()),
            )

        logger.error(
            f"Unhandled exception on {request.url.path}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "code": "InternalError",
                "message": "An unexpected error occurred",
            },
        )


def _build_validation_error_response(exc: RequestValidationError) -> dict:
    """Build structured validation error response."""
    return {
        "message": "Invalid request data",
        "errors": [
            {
                "field": ".".join(str(loc) for loc in e["loc"]),
                "message": e["msg"],
                "type": e["type"],
            }
            for e in exc.errors()
        ],
    }
