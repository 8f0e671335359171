"""Exception handlers rendering RFC 7807 Problem Details.

{
    "type": "https://veil.dev/errors/<error-type>",
    "title": "Human-readable error title",
    "status": 409,
    "detail": "Detailed error description",
    "instance": "/escrow/resolve",
    "request_id": "req_abc123",
    "timestamp": "2026-01-01T00:00:00Z",
    "error": "INVALID_TRANSITION",
    ... additional fields
}
"""
from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from veil_core.exceptions import VeilAuthenticationError, VeilException

logger = logging.getLogger(__name__)

ERROR_TYPE_BASE = "https://veil.dev/errors"


@dataclass
class RFC7807Error:
    """RFC 7807 Problem Details representation."""
    type: str
    title: str
    status: int
    detail: str
    instance: str
    request_id: str
    error: str
    extensions: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "type": self.type,
            "title": self.title,
            "status": self.status,
            "detail": self.detail,
            "instance": self.instance,
            "request_id": self.request_id,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "error": self.error,
        }
        if self.extensions:
            result.update(self.extensions)
        return result


ERROR_TYPES = {
    "VALIDATION_ERROR": ("validation-error", "Validation Error"),
    "NOT_FOUND": ("not-found", "Resource Not Found"),
    "CONFLICT": ("conflict", "Resource Conflict"),
    "INVALID_TRANSITION": ("invalid-transition", "Invalid State Transition"),
    "AUTHENTICATION_REQUIRED": ("authentication-required", "Authentication Required"),
    "INVALID_CREDENTIAL": ("invalid-credential", "Invalid Credential"),
    "CREDENTIAL_EXPIRED": ("credential-expired", "Credential Expired"),
    "NONCE_NOT_FOUND": ("nonce-not-found", "Nonce Not Found"),
    "NONCE_EXPIRED": ("nonce-expired", "Nonce Expired"),
    "ADDRESS_MISMATCH": ("address-mismatch", "Address Mismatch"),
    "INVALID_SIGNATURE": ("invalid-signature", "Invalid Signature"),
    "FORBIDDEN": ("forbidden", "Access Denied"),
    "UPSTREAM_UNAVAILABLE": ("upstream-unavailable", "External Ledger Unavailable"),
    "STORAGE_UNAVAILABLE": ("storage-unavailable", "Storage Unavailable"),
    "INTERNAL_ERROR": ("internal-error", "Internal Server Error"),
    "BAD_REQUEST": ("bad-request", "Bad Request"),
    "METHOD_NOT_ALLOWED": ("method-not-allowed", "Method Not Allowed"),
}


def get_request_id(request: Request) -> str:
    """Extract request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", "unknown")


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request_id: str,
    details: dict | None = None,
    instance: str = "",
    headers: dict | None = None,
) -> JSONResponse:
    """Create an RFC 7807 compliant error response."""
    type_info = ERROR_TYPES.get(
        error_code,
        (error_code.lower().replace("_", "-"), error_code.replace("_", " ").title()),
    )

    error = RFC7807Error(
        type=f"{ERROR_TYPE_BASE}/{type_info[0]}",
        title=type_info[1],
        status=status_code,
        detail=message,
        instance=instance,
        request_id=request_id,
        error=error_code,
        extensions=details,
    )

    response_headers = {"X-Request-ID": request_id}
    if headers:
        response_headers.update(headers)
    return JSONResponse(
        status_code=status_code,
        content=error.to_dict(),
        headers=response_headers,
        media_type="application/problem+json",
    )


def create_validation_error_response(
    errors: list,
    request_id: str,
    instance: str,
) -> JSONResponse:
    """RFC 7807 response for request validation errors with per-field details."""
    return create_error_response(
        error_code="VALIDATION_ERROR",
        message="One or more fields failed validation",
        status_code=422,
        request_id=request_id,
        details={"errors": errors},
        instance=instance,
    )


def register_exception_handlers(app: FastAPI, expose_internals: bool = False) -> None:
    """Register all exception handlers with the FastAPI application.

    ``expose_internals`` adds exception types and tracebacks to 5xx bodies
    and should only be set in dev.
    """

    app.add_middleware(ExceptionHandlerMiddleware, expose_internals=expose_internals)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        request_id = get_request_id(request)

        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

        logger.warning(
            f"Validation error: {len(errors)} field(s) failed",
            extra={"path": request.url.path},
        )

        return create_validation_error_response(
            errors=errors,
            request_id=request_id,
            instance=request.url.path,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        request_id = get_request_id(request)

        status_to_code = {
            400: "BAD_REQUEST",
            401: "AUTHENTICATION_REQUIRED",
            403: "FORBIDDEN",
            404: "NOT_FOUND",
            405: "METHOD_NOT_ALLOWED",
            409: "CONFLICT",
            503: "SERVICE_UNAVAILABLE",
        }
        error_code = status_to_code.get(exc.status_code, "INTERNAL_ERROR")

        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"HTTP error {exc.status_code}: {exc.detail}", extra={"path": request.url.path})

        return create_error_response(
            error_code=error_code,
            message=str(exc.detail) if exc.detail else "An error occurred",
            status_code=exc.status_code,
            request_id=request_id,
            instance=request.url.path,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(VeilException)
    async def veil_exception_handler(
        request: Request, exc: VeilException
    ) -> JSONResponse:
        """Handle all Veil exceptions with their stable error kind."""
        request_id = get_request_id(request)

        if exc.http_status >= 500:
            logger.error(
                f"Server error: {exc.error_code} - {exc.message}",
                extra={"error_code": exc.error_code},
            )
        else:
            logger.warning(
                f"Client error: {exc.error_code} - {exc.message}",
                extra={"error_code": exc.error_code},
            )

        details = exc.details if expose_internals or exc.http_status < 500 else None
        headers = (
            {"WWW-Authenticate": "Bearer"}
            if isinstance(exc, VeilAuthenticationError)
            else None
        )

        return create_error_response(
            error_code=exc.error_code,
            message=exc.message,
            status_code=exc.http_status,
            request_id=request_id,
            details=details,
            instance=request.url.path,
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; internals only shown in dev."""
        request_id = get_request_id(request)

        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            extra={"path": request.url.path, "method": request.method},
            exc_info=True,
        )

        if expose_internals:
            message = f"{type(exc).__name__}: {exc}"
            details = {
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc().split("\n")[-10:],
            }
        else:
            message = "An internal error occurred"
            details = None

        return create_error_response(
            error_code="INTERNAL_ERROR",
            message=message,
            status_code=500,
            request_id=request_id,
            details=details,
            instance=request.url.path,
        )


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Converts errors raised outside route handlers (e.g. in other middleware)."""

    def __init__(self, app, expose_internals: bool = False):
        super().__init__(app)
        self.expose_internals = expose_internals

    async def dispatch(self, request: Request, call_next: Callable) -> JSONResponse:
        try:
            return await call_next(request)
        except VeilException:
            raise
        except Exception as exc:
            request_id = get_request_id(request)
            logger.error(
                f"Middleware exception: {type(exc).__name__}: {exc}",
                extra={"path": request.url.path},
                exc_info=True,
            )
            message = (
                f"{type(exc).__name__}: {exc}"
                if self.expose_internals
                else "An internal error occurred"
            )
            return create_error_response(
                error_code="INTERNAL_ERROR",
                message=message,
                status_code=500,
                request_id=request_id,
                instance=request.url.path,
            )
