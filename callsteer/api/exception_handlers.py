"""
Global exception handlers for FastAPI.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from callsteer.exceptions import (
    InvalidInputError,
    NotFoundError,
    ServiceUnavailableError,
    SteeringError,
)
from callsteer.logging import get_logger

log = get_logger(__name__)


def _error_body(error_type: str, message: str) -> dict:
    return {"success": False, "error": {"type": error_type, "message": message}}


def status_code_for(exc: SteeringError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidInputError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ServiceUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def setup_exception_handlers(app: FastAPI):
    """Register exception handlers with the FastAPI application.

    Engine errors map to 404 / 400 / 503 by family, request bodies that
    fail schema validation map to 400, and anything else to a generic 500.
    """

    @app.exception_handler(SteeringError)
    async def steering_error_handler(
        request: Request,
        exc: SteeringError,
    ) -> JSONResponse:
        status_code = status_code_for(exc)
        log.warning(
            "request_error",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            message=exc.message,
            status_code=status_code,
        )
        return JSONResponse(
            status_code=status_code,
            content=_error_body(type(exc).__name__, exc.message),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request body"
        log.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            message=message,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("ValidationError", message),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        log.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            message=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("InternalServerError", "An unexpected error occurred"),
        )
