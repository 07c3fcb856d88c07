"""Error taxonomy and the handlers that render it as JSON."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from job_escrow_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """
    Base error carrying a machine-readable code and an HTTP status.

    Subclasses fix the status code and default error code; callers pass a
    more specific code when one helps the client (e.g. PROPOSAL_NOT_FOUND).
    """

    default_error = "SERVICE_ERROR"
    default_status = 500

    def __init__(
        self,
        error: str | None = None,
        message: str = "",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.error = error or self.default_error
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.details = details if details is not None else {}
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed input. Recoverable by the caller correcting it."""

    default_error = "VALIDATION_ERROR"
    default_status = 400


class NotAuthorizedError(ServiceError):
    """Actor lacks the role required for the operation."""

    default_error = "NOT_AUTHORIZED"
    default_status = 403


class NotEligibleError(ServiceError):
    """Contractor fails the category, service-area, or availability check."""

    default_error = "NOT_ELIGIBLE"
    default_status = 403


class NotFoundError(ServiceError):
    default_error = "NOT_FOUND"
    default_status = 404


class ConflictError(ServiceError):
    """Optimistic-concurrency loss. Re-read state and decide whether to retry."""

    default_error = "CONFLICT"
    default_status = 409


class InvalidTransitionError(ServiceError):
    """Requested job status edge is illegal from the current status."""

    default_error = "INVALID_TRANSITION"
    default_status = 409


class InvalidStateError(ServiceError):
    """Operation requested against a job, proposal, or hold in the wrong state."""

    default_error = "INVALID_STATE"
    default_status = 409


class PaymentFailure(ServiceError):
    """The payment processor rejected or failed a money movement."""

    default_error = "PAYMENT_FAILURE"
    default_status = 502


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    get_logger(__name__).warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    get_logger(__name__).exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (404/405 from the router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"error": "NOT_FOUND", "message": "Not found", "details": {}},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "HTTP_ERROR", "message": str(exc.detail), "details": {}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(
        StarletteHTTPException, cast("ExceptionHandler", http_exception_handler)
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
