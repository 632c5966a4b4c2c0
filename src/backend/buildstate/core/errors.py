"""Service error taxonomy and its HTTP rendering.

Services raise these exceptions; the handlers registered by
``register_exception_handlers`` turn them into a uniform JSON body::

    {"error": {"kind": "not_found", "message": "Inspection not found"}}

Validation errors additionally carry ``issues``, a list of
``{"field": ..., "message": ...}`` entries.
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "service_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(ServiceError):
    """Malformed or inconsistent input."""

    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, issues: list[dict[str, str]] | None = None):
        super().__init__(message)
        self.issues = issues or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, issues=[{"field": field, "message": message}])

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["issues"] = self.issues
        return data


class ForbiddenError(ServiceError):
    """The caller can see the entity but may not perform the action."""

    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ServiceError):
    """Entity absent, or outside the caller's scope."""

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    """Action conflicts with the entity's current state."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InternalError(ServiceError):
    """Persistence or unexpected failure. Detail stays in server logs."""

    kind = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


def _error_response(error: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers that render every failure in the shared error shape."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if isinstance(exc, InternalError):
            logger.error("Internal error", path=str(request.url.path), error=exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        issues = []
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
            issues.append({"field": ".".join(loc) or "request", "message": str(error.get("msg"))})

        logger.warning("Validation error", path=str(request.url.path), issues=issues)
        return _error_response(ValidationError("Request validation failed", issues=issues))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error", path=str(request.url.path), error=str(exc))
        return _error_response(InternalError())
