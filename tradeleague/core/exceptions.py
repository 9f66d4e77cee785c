"""Custom exceptions and centralized exception handlers."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base application exception with structured error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.status_code = status_code or self.status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
            **({"details": self.details} if self.details else {}),
        }


class ConfigurationError(AppException):
    """Required configuration is missing; the affected component cannot start."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "CONFIGURATION_ERROR"
    message = "Component is not configured"


class ExternalProviderError(AppException):
    """One call to the external quote provider failed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "EXTERNAL_PROVIDER_ERROR"
    message = "Quote provider request failed"


class InvalidInputError(AppException):
    """Order or request parameters are invalid."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_INPUT"
    message = "Invalid input"


class InsufficientFundsError(AppException):
    """Cash balance does not cover the order."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INSUFFICIENT_FUNDS"
    message = "Insufficient funds"


class InsufficientQuantityError(AppException):
    """Sell quantity exceeds the held quantity."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INSUFFICIENT_QUANTITY"
    message = "Insufficient quantity"


class StockNotOwnedError(AppException):
    """Sell requested for a security that is not held."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "STOCK_NOT_OWNED"
    message = "Stock not owned"


class NotFoundError(AppException):
    """Resource not found."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class ConflictError(AppException):
    """Resource conflict."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"
    message = "Resource conflict"


class AuthenticationError(AppException):
    """Authentication failed."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "UNAUTHORIZED"
    message = "Authentication required"


class InternalError(AppException):
    """Unexpected failure, surfaced to callers without internals."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "INTERNAL_ERROR"
    message = "An unexpected error occurred"


def _error_response(request: Request, error: AppException) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_dict()},
        headers={"X-Request-ID": getattr(request.state, "request_id", "unknown")},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"success": false, "error": {...}}``."""
    from .config import settings
    from .logging import fields, get_logger

    logger = get_logger("errors")

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return _error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = AppException(
            message="Request validation failed",
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "errors": [
                    {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
                    for e in exc.errors()
                ]
            },
        )
        return _error_response(request, error)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            f"Unhandled exception on {request.method} {request.url.path}",
            **fields(exception_type=type(exc).__name__),
        )
        return _error_response(request, InternalError(message=str(exc) if settings.debug else None))
