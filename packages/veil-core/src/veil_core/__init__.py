"""Core domain primitives shared across Veil services."""

from .config import VeilSettings, load_settings
from .exceptions import (
    VeilException,
    VeilValidationError,
    VeilNotFoundError,
    VeilConflictError,
    InvalidTransitionError,
    VeilAuthenticationError,
    VeilAuthorizationError,
    UpstreamUnavailableError,
    StorageUnavailableError,
)
from .identity import hash_address, is_valid_address, require_address
from .models import (
    AuthNonce,
    EscrowRecord,
    EscrowStatus,
    LoyaltyRecord,
    MerchantProfile,
    PendingStatus,
    PendingTransaction,
    PurchaseType,
    ReceiptRecord,
    ReceiptStatus,
    Role,
    TokenType,
    TransitionResult,
    UpsertResult,
)
from .storage import StorageBackend, JsonFileStore, PostgresStore, create_store

__all__ = [
    "VeilSettings",
    "load_settings",
    "VeilException",
    "VeilValidationError",
    "VeilNotFoundError",
    "VeilConflictError",
    "InvalidTransitionError",
    "VeilAuthenticationError",
    "VeilAuthorizationError",
    "UpstreamUnavailableError",
    "StorageUnavailableError",
    "hash_address",
    "is_valid_address",
    "require_address",
    "AuthNonce",
    "EscrowRecord",
    "EscrowStatus",
    "LoyaltyRecord",
    "MerchantProfile",
    "PendingStatus",
    "PendingTransaction",
    "PurchaseType",
    "ReceiptRecord",
    "ReceiptStatus",
    "Role",
    "TokenType",
    "TransitionResult",
    "UpsertResult",
    "StorageBackend",
    "JsonFileStore",
    "PostgresStore",
    "create_store",
]
