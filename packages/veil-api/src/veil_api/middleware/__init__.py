"""Middleware for the Veil API.

- Structured logging with correlation IDs
- Exception handling (RFC 7807)
- Bearer credential dependencies
"""
from .auth import (
    bearer_scheme,
    get_credential_issuer,
    optional_credential,
    require_credential,
    require_merchant,
)
from .exceptions import (
    ExceptionHandlerMiddleware,
    RFC7807Error,
    create_error_response,
    create_validation_error_response,
    register_exception_handlers,
)
from .logging import (
    JSONFormatter,
    LoggingConfig,
    SENSITIVE_HEADERS,
    SENSITIVE_PARAMS,
    StructuredLoggingMiddleware,
    get_correlation_id,
    request_id_var,
    setup_logging,
)

__all__ = [
    "bearer_scheme",
    "get_credential_issuer",
    "optional_credential",
    "require_credential",
    "require_merchant",
    "ExceptionHandlerMiddleware",
    "RFC7807Error",
    "create_error_response",
    "create_validation_error_response",
    "register_exception_handlers",
    "JSONFormatter",
    "LoggingConfig",
    "SENSITIVE_HEADERS",
    "SENSITIVE_PARAMS",
    "StructuredLoggingMiddleware",
    "get_correlation_id",
    "request_id_var",
    "setup_logging",
]
