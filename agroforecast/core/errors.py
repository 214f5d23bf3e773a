"""
Centralised error handling: exception hierarchy + FastAPI handlers.

Failure taxonomy:
    InsufficientDataError           history shorter than a model minimum (surfaced)
    ModelNotInitializedError        operation before lifecycle setup (surfaced)
    ExternalSourceUnavailableError  opportunistic fetch failed (recovered locally)
    NumericalDegeneracyError        regression step unusable (recovered locally)
    PersistenceError                cache I/O failed (recovered locally)

Only the first two ever reach an API caller from the prediction paths;
the rest are caught by the component that raised them and logged.

Usage:
    from agroforecast.core.errors import InsufficientDataError, register_error_handlers

    raise InsufficientDataError(required=7, actual=6)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agroforecast.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class AdvisoryError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class InsufficientDataError(AdvisoryError):
    """Not enough observations for a model minimum (422)."""

    def __init__(self, required: int, actual: int, *, what: str = "observations"):
        super().__init__(
            message=f"Insufficient data: need at least {required} {what}, got {actual}",
            status_code=422,
            error_code="INSUFFICIENT_DATA",
            details={"required": required, "actual": actual},
        )
        self.required = required
        self.actual = actual


class ModelNotInitializedError(AdvisoryError):
    """Model used before initialise()/train() (503)."""

    def __init__(self, model: str):
        super().__init__(
            message=f"Model '{model}' is not initialised",
            status_code=503,
            error_code="MODEL_NOT_INITIALIZED",
            details={"model": model},
        )
        self.model = model


class ExternalSourceUnavailableError(AdvisoryError):
    """External weather provider failed (502)."""

    def __init__(self, source: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External source '{source}' unavailable: {message}",
            status_code=502,
            error_code="EXTERNAL_SOURCE_UNAVAILABLE",
            details={"source": source, **details},
        )


class NumericalDegeneracyError(AdvisoryError):
    """Least-squares fit produced an unusable solution."""

    def __init__(self, model: str, message: str = ""):
        super().__init__(
            message=f"Model '{model}' regression degenerate: {message}",
            status_code=500,
            error_code="NUMERICAL_DEGENERACY",
            details={"model": model},
        )


class PersistenceError(AdvisoryError):
    """Prediction store read/write failed."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Persistence '{operation}' failed: {message}",
            status_code=500,
            error_code="PERSISTENCE_FAILURE",
            details={"operation": operation, **details},
        )


class NotFoundError(AdvisoryError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"resource": resource, **identifiers},
        )


class ValidationError(AdvisoryError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(AdvisoryError)
    async def handle_advisory_error(request: Request, exc: AdvisoryError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log("API Error [%s]: %s | details=%s", exc.error_code, exc.message, exc.details)
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
