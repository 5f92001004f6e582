"""
Error hierarchy for restbind.

Every error raised by a resource handler on purpose is a RestBindError
carrying an HTTP status and a JSON-serializable response body. Anything
else (store/driver failures, bugs in user hooks) passes through unchanged
and is answered by the application's catch-all handler.
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Exceptions
# =============================================================================


class RestBindError(Exception):
    """Base exception for errors that map onto an HTTP response."""

    http_status: int = 500
    code: str = "InternalError"

    def __init__(
        self,
        message: str = "",
        *,
        body: dict[str, Any] | None = None,
        http_status: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.body = body
        if http_status is not None:
            self.http_status = http_status

    def to_response(self) -> dict[str, Any]:
        """Response body for this error."""
        if self.body is not None:
            return self.body
        return {"code": self.code, "message": self.message}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class BadRequestError(RestBindError):
    """Raised when the request itself is malformed (400)."""

    http_status = 400
    code = "BadRequest"


class InvalidQueryError(BadRequestError):
    """
    Raised when a query-string parameter does not follow the filter grammar.

    Handlers answer this directly with a 400 before the pipeline starts,
    so the store is never touched.
    """

    code = "InvalidQuery"

    def __init__(self, message: str, *, errors: Any = None, parameter: str = "q"):
        self.parameter = parameter
        self.errors = errors if errors is not None else message
        super().__init__(
            message,
            body={"message": message, "errors": self.errors},
        )


class InvalidContentError(RestBindError):
    """Raised when the request body cannot be applied (400)."""

    http_status = 400
    code = "InvalidContent"


class ResourceNotFoundError(RestBindError):
    """Raised when no entity matches the requested id (404)."""

    http_status = 404
    code = "ResourceNotFound"

    def __init__(self, resource_id: Any):
        self.resource_id = resource_id
        super().__init__(str(resource_id))


# =============================================================================
# Translation
# =============================================================================


def is_validation_error(exc: BaseException) -> bool:
    """Check the error discriminator used by persistence layers."""
    return type(exc).__name__ == "ValidationError"


def validation_details(exc: BaseException) -> list[Any]:
    """
    Extract field-level errors from a persistence validation failure.

    pydantic exposes them via errors(); other layers are expected to
    carry an ``errors`` attribute (list or mapping).
    """
    errors = getattr(exc, "errors", None)
    if callable(errors):
        try:
            return list(errors(include_url=False, include_context=False))
        except TypeError:
            return list(errors())
    if isinstance(errors, dict):
        return [{"field": key, "message": str(value)} for key, value in errors.items()]
    if errors is None:
        return [str(exc)]
    return list(errors)


def translate_error(exc: BaseException) -> BaseException:
    """
    Rewrite a persistence validation failure into a client error.

    Any error whose class is named ``ValidationError`` becomes an
    InvalidContentError with the original field-level errors attached;
    every other error is returned unchanged.
    """
    if not is_validation_error(exc):
        return exc

    translated = InvalidContentError(
        "Validation failed",
        body={"message": "Validation failed", "errors": validation_details(exc)},
    )
    translated.__cause__ = exc
    return translated


__all__ = [
    "RestBindError",
    "BadRequestError",
    "InvalidQueryError",
    "InvalidContentError",
    "ResourceNotFoundError",
    "is_validation_error",
    "validation_details",
    "translate_error",
]
