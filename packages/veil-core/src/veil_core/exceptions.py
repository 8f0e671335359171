"""Unified exception hierarchy for Veil.

All Veil-specific exceptions inherit from VeilException, enabling:
- Consistent error handling across packages
- Proper HTTP status code mapping in the API layer
- Structured error responses with stable error codes

Usage:
    from veil_core.exceptions import VeilNotFoundError

    record = await store.get_escrow(commitment)
    if record is None:
        raise VeilNotFoundError("Escrow", commitment)

All exceptions have:
- error_code: Machine-readable error kind (e.g., "INVALID_TRANSITION")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import Any, Optional


class VeilException(Exception):
    """Base exception for all Veil errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "VEIL_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Validation & Input Errors (4xx)
# =============================================================================

class VeilValidationError(VeilException):
    """Invalid input data or parameters. Never retried automatically."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class VeilNotFoundError(VeilException):
    """Requested resource not found."""

    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} '{resource_id}' not found"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        super().__init__(message, details=details)


class VeilConflictError(VeilException):
    """A natural key is already registered with different contents."""

    error_code = "CONFLICT"
    http_status = 409


class InvalidTransitionError(VeilException):
    """A state transition is not legal from the record's current state."""

    error_code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        current_status: str,
        requested_status: str,
    ) -> None:
        super().__init__(
            f"{resource_type} '{resource_id}' cannot move from "
            f"'{current_status}' to '{requested_status}'",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )
        self.current_status = current_status
        self.requested_status = requested_status


# =============================================================================
# Authentication & Authorization
# =============================================================================

class VeilAuthenticationError(VeilException):
    """Authentication failed or is missing."""

    error_code = "AUTHENTICATION_REQUIRED"
    http_status = 401


class InvalidCredentialError(VeilAuthenticationError):
    """Bearer credential is malformed or its signature does not verify."""

    error_code = "INVALID_CREDENTIAL"


class CredentialExpiredError(VeilAuthenticationError):
    """Bearer credential is past its validity window."""

    error_code = "CREDENTIAL_EXPIRED"


class NonceNotFoundError(VeilAuthenticationError):
    """Nonce was never issued, was superseded, or was already consumed."""

    error_code = "NONCE_NOT_FOUND"

    def __init__(self, nonce: str) -> None:
        super().__init__("Invalid or already used nonce", details={"nonce": nonce})


class NonceExpiredError(VeilAuthenticationError):
    """Nonce exists but its TTL has elapsed."""

    error_code = "NONCE_EXPIRED"

    def __init__(self, nonce: str) -> None:
        super().__init__("Nonce has expired, request a new one", details={"nonce": nonce})


class AddressMismatchError(VeilAuthenticationError):
    """The verified nonce is bound to a different address."""

    error_code = "ADDRESS_MISMATCH"


class InvalidSignatureError(VeilAuthenticationError):
    """The wallet signature over the challenge did not verify."""

    error_code = "INVALID_SIGNATURE"


class VeilAuthorizationError(VeilException):
    """Authenticated caller is not allowed to perform the action."""

    error_code = "FORBIDDEN"
    http_status = 403


# =============================================================================
# Infrastructure Errors (5xx)
# =============================================================================

class UpstreamUnavailableError(VeilException):
    """The external ledger could not be reached or answered with a server error.

    Distinct from the ledger answering "not found".
    """

    error_code = "UPSTREAM_UNAVAILABLE"
    http_status = 503

    def __init__(
        self,
        message: str,
        upstream: str = "external_ledger",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["upstream"] = upstream
        super().__init__(message, details=details)


class StorageUnavailableError(VeilException):
    """The storage backend cannot be reached."""

    error_code = "STORAGE_UNAVAILABLE"
    http_status = 503


__all__ = [
    "VeilException",
    "VeilValidationError",
    "VeilNotFoundError",
    "VeilConflictError",
    "InvalidTransitionError",
    "VeilAuthenticationError",
    "InvalidCredentialError",
    "CredentialExpiredError",
    "NonceNotFoundError",
    "NonceExpiredError",
    "AddressMismatchError",
    "InvalidSignatureError",
    "VeilAuthorizationError",
    "UpstreamUnavailableError",
    "StorageUnavailableError",
]
