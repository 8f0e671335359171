"""Ledger record types shared by the storage backends and services."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


class Role(str, Enum):
    """Credential roles and the side of a sale an identity hash is matched on."""
    BUYER = "buyer"
    MERCHANT = "merchant"


class ReceiptStatus(str, Enum):
    CONFIRMED = "confirmed"
    ESCROWED = "escrowed"
    REFUNDED = "refunded"
    COMPLETED = "completed"


class EscrowStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class PendingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PurchaseType(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"
    ESCROW = "escrow"


class TokenType(int, Enum):
    CREDITS = 0
    USDCX = 1


def _to_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class _Record:
    """Dict round-tripping shared by all record dataclasses."""

    _datetime_fields: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {k: _to_json(v) for k, v in asdict(self).items()}  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        kwargs = {k: v for k, v in data.items() if k in names}
        for name in cls._datetime_fields:
            if name in kwargs:
                kwargs[name] = _parse_dt(kwargs[name])
        return cls(**kwargs)


@dataclass
class AuthNonce(_Record):
    """One-time login challenge bound to a claimed address."""
    nonce: str
    address: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False

    _datetime_fields = ("issued_at", "expires_at")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def is_live(self, now: Optional[datetime] = None) -> bool:
        return not self.consumed and not self.is_expired(now)


@dataclass
class ReceiptRecord(_Record):
    """Off-chain index entry for one purchase. purchase_commitment is unique."""
    purchase_commitment: str
    buyer_address_hash: str
    merchant_address_hash: str
    total: int
    token_type: int = TokenType.CREDITS.value
    cart_commitment: str = ""
    tx_id: str = ""
    status: str = ReceiptStatus.CONFIRMED.value
    purchase_type: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("rcpt"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    _datetime_fields = ("created_at", "updated_at")

    def same_sale(self, other: "ReceiptRecord") -> bool:
        return (
            self.buyer_address_hash == other.buyer_address_hash
            and self.merchant_address_hash == other.merchant_address_hash
            and self.total == other.total
        )


@dataclass
class EscrowRecord(_Record):
    """Escrowed purchase. Moves once from active to completed or refunded."""
    purchase_commitment: str
    buyer_address_hash: str
    merchant_address_hash: str
    total: int
    escrow_tx_id: str = ""
    status: str = EscrowStatus.ACTIVE.value
    resolve_tx_id: Optional[str] = None
    created_block: Optional[int] = None
    id: str = field(default_factory=lambda: new_id("esc"))
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    _datetime_fields = ("created_at", "resolved_at")

    def same_sale(self, other: "EscrowRecord") -> bool:
        return (
            self.buyer_address_hash == other.buyer_address_hash
            and self.merchant_address_hash == other.merchant_address_hash
            and self.total == other.total
        )


@dataclass
class LoyaltyRecord(_Record):
    """Append-only loyalty claim. Aggregates are computed, never stored."""
    address_hash: str
    score: int
    total_spent: int
    tx_id: str
    purchase_commitment: Optional[str] = None
    nullifier: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("loy"))
    created_at: datetime = field(default_factory=utcnow)

    _datetime_fields = ("created_at",)

    @property
    def claim_key(self) -> str:
        """Idempotency key: the nullifier when present, else the transaction id."""
        return self.nullifier or self.tx_id


@dataclass
class PendingTransaction(_Record):
    """Optimistically recorded submission awaiting ledger confirmation."""
    tx_id: str
    address_hash: str
    kind: str
    status: str = PendingStatus.PENDING.value
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utcnow)

    _datetime_fields = ("created_at", "confirmed_at", "updated_at")


@dataclass
class MerchantProfile(_Record):
    """Display metadata for a merchant identity."""
    address_hash: str
    name: str
    category: str = "general"
    created_at: datetime = field(default_factory=utcnow)

    _datetime_fields = ("created_at",)


R = TypeVar("R")


@dataclass
class UpsertResult(Generic[R]):
    """Outcome of an idempotent create: the stored row and whether it is new."""
    created: bool
    record: R


@dataclass
class TransitionResult(Generic[R]):
    """Outcome of a state transition; changed is False for an identical replay."""
    changed: bool
    record: R


__all__ = [
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
    "new_id",
    "utcnow",
]
