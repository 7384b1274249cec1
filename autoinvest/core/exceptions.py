"""
Domain exceptions and global exception handlers for the FastAPI application.

Every error response follows a consistent JSON structure::

    {
        "error": true,
        "message": "<human-readable description>",
        "details": <optional, e.g. {"field": "amount"}>
    }

The service and engine layers raise the domain exceptions below without
importing FastAPI, so business logic stays usable from a plain script or a
scheduler process.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from autoinvest.core.resilience import CircuitBreakerError

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Domain exceptions  (raised by engine/service layers, caught by handlers below)
# ────────────────────────────────────────────────────────────────────────────


class AppException(Exception):
    """Base exception for all application-level errors."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundException(AppException):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=404,
            message=f"{resource} with id '{identifier}' not found",
        )


class ValidationError(AppException):
    """
    Malformed input to a create/update operation (422).

    ``field`` names the offending input so a form can highlight it.
    Never retried automatically — the caller must fix the input.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            status_code=422,
            message=message,
            details={"field": field} if field else None,
        )
        self.field = field


class InvalidAllocationError(ValidationError):
    """Allocation percentages are out of range or do not sum to 100 (422)."""

    def __init__(self, message: str, field: str = "allocations"):
        super().__init__(message, field=field)


class ConfigurationError(AppException):
    """User configuration is incomplete, e.g. custom DRIP without allocations (422)."""

    def __init__(self, message: str):
        super().__init__(status_code=422, message=message)


class PlanStateError(AppException):
    """Requested lifecycle transition is not allowed from the current state (409)."""

    def __init__(self, message: str):
        super().__init__(status_code=409, message=message)


class ConcurrencyError(AppException):
    """
    A conflicting concurrent update was detected by the data-access layer (409).

    The caller should re-read and retry the whole operation.
    """

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=409,
            message=(
                f"{resource} '{identifier}' was modified concurrently; "
                f"reload and retry"
            ),
        )


class InsufficientFundsError(Exception):
    """
    Available funds do not cover a scheduled contribution.

    Internal to execution recording: it is resolved by the plan's
    insufficient-funds policy and never propagated to API callers.
    """

    def __init__(self, required: Any, available: Any):
        self.required = required
        self.available = available
        super().__init__(f"insufficient funds: required {required}, available {available}")


# ────────────────────────────────────────────────────────────────────────────
# FastAPI exception handler registration
# ────────────────────────────────────────────────────────────────────────────


def add_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI application instance."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        """Handle domain-specific exceptions raised by the service layer."""
        content = {"error": True, "message": exc.message}
        if exc.details is not None:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(CircuitBreakerError)
    async def circuit_breaker_handler(
        request: Request, exc: CircuitBreakerError
    ) -> JSONResponse:
        """Database circuit is open: 503 with a Retry-After hint."""
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={
                "error": True,
                "message": "Service temporarily unavailable: database circuit is open",
            },
            headers={"Retry-After": str(max(1, int(exc.retry_after)))},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle standard HTTP exceptions (e.g. 404 from path-not-found)."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Return a 422 listing each field that failed request validation."""
        errors = []
        for err in exc.errors():
            loc = " -> ".join(str(part) for part in err["loc"])
            errors.append({"field": loc, "message": err["msg"]})
        return JSONResponse(
            status_code=422,
            content={"error": True, "message": "Validation failed", "details": errors},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected exceptions: log with traceback, return a generic 500."""
        logger.exception(
            "Unhandled exception on %s %s", request.method, request.url.path
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": True,
                "message": "Internal Server Error. Please contact support.",
            },
        )
