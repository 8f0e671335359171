"""Event ledger for receipts, escrows, loyalty claims and merchant profiles.

Every create is idempotent on the record's natural key. Re-registering the
same sale returns the stored row with ``created=False``; re-registering the
key with different identifying fields raises ``VeilConflictError``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from veil_core.exceptions import (
    InvalidTransitionError,
    VeilConflictError,
    VeilNotFoundError,
    VeilValidationError,
)
from veil_core.identity import is_identity_hash
from veil_core.models import (
    EscrowRecord,
    EscrowStatus,
    LoyaltyRecord,
    MerchantProfile,
    PendingTransaction,
    PurchaseType,
    ReceiptRecord,
    ReceiptStatus,
    Role,
    TokenType,
    TransitionResult,
    UpsertResult,
)
from veil_core.storage import DEFAULT_LIST_LIMIT, StorageBackend

from .state_machine import RECEIPT_STATUS_ON_RESOLVE, source_state_for

logger = logging.getLogger("veil.ledger")

_RECEIPT_STATUSES = {s.value for s in ReceiptStatus}
_ESCROW_STATUSES = {s.value for s in EscrowStatus}
_PURCHASE_TYPES = {p.value for p in PurchaseType}
_TOKEN_TYPES = {t.value for t in TokenType}


def _require_text(value: Optional[str], field: str) -> str:
    if not value or not str(value).strip():
        raise VeilValidationError(f"{field} is required", field=field)
    return str(value).strip()


def _require_hash(value: str, field: str) -> str:
    if not is_identity_hash(value):
        raise VeilValidationError(f"{field} must be an identity hash", field=field)
    return value


def _require_amount(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise VeilValidationError(f"{field} must be a non-negative integer", field=field)
    return value


class EventLedger:
    """Write and read side of the off-chain event index."""

    def __init__(self, store: StorageBackend):
        self._store = store

    @property
    def store(self) -> StorageBackend:
        return self._store

    # -- receipts ----------------------------------------------------------

    async def register_receipt(self, record: ReceiptRecord) -> UpsertResult[ReceiptRecord]:
        """Index a purchase receipt, keyed by its purchase commitment."""
        record.purchase_commitment = _require_text(
            record.purchase_commitment, "purchase_commitment"
        )
        _require_hash(record.buyer_address_hash, "buyer_address_hash")
        _require_hash(record.merchant_address_hash, "merchant_address_hash")
        _require_amount(record.total, "total")
        if record.token_type not in _TOKEN_TYPES:
            raise VeilValidationError("Unknown token_type", field="token_type")
        if record.status not in _RECEIPT_STATUSES:
            raise VeilValidationError("Unknown receipt status", field="status")
        if record.purchase_type is not None and record.purchase_type not in _PURCHASE_TYPES:
            raise VeilValidationError("Unknown purchase_type", field="purchase_type")

        result = await self._store.upsert_receipt(record)
        if not result.created and not result.record.same_sale(record):
            raise VeilConflictError(
                "purchase_commitment is already registered for a different sale",
                details={"purchase_commitment": record.purchase_commitment},
            )
        logger.info(
            "Receipt %s %s for merchant %s",
            record.purchase_commitment,
            "registered" if result.created else "already registered",
            record.merchant_address_hash[:16],
        )
        return result

    async def get_receipt(self, purchase_commitment: str) -> ReceiptRecord:
        record = await self._store.get_receipt(purchase_commitment)
        if record is None:
            raise VeilNotFoundError("Receipt", purchase_commitment)
        return record

    async def list_receipts(
        self,
        identity_hash: str,
        role: Role,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[ReceiptRecord]:
        return await self._store.list_receipts(identity_hash, Role(role), limit)

    # -- escrow ------------------------------------------------------------

    async def open_escrow(self, record: EscrowRecord) -> UpsertResult[EscrowRecord]:
        """Record an escrow deposit in the ``active`` state."""
        record.purchase_commitment = _require_text(
            record.purchase_commitment, "purchase_commitment"
        )
        _require_hash(record.buyer_address_hash, "buyer_address_hash")
        _require_hash(record.merchant_address_hash, "merchant_address_hash")
        _require_amount(record.total, "total")
        if record.created_block is not None:
            _require_amount(record.created_block, "created_block")
        record.status = EscrowStatus.ACTIVE.value
        record.resolve_tx_id = None
        record.resolved_at = None

        result = await self._store.upsert_escrow(record)
        if not result.created and not result.record.same_sale(record):
            raise VeilConflictError(
                "purchase_commitment is already escrowed for a different sale",
                details={"purchase_commitment": record.purchase_commitment},
            )
        if result.created:
            logger.info(
                "Escrow opened for %s (merchant %s)",
                record.purchase_commitment,
                record.merchant_address_hash[:16],
            )
        return result

    async def get_escrow(self, purchase_commitment: str) -> EscrowRecord:
        record = await self._store.get_escrow(purchase_commitment)
        if record is None:
            raise VeilNotFoundError("Escrow", purchase_commitment)
        return record

    async def list_escrows(
        self,
        identity_hash: str,
        role: Role = Role.BUYER,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[EscrowRecord]:
        return await self._store.list_escrows(identity_hash, Role(role), limit)

    async def resolve_escrow(
        self,
        purchase_commitment: str,
        status: str,
        resolve_tx_id: Optional[str] = None,
    ) -> TransitionResult[EscrowRecord]:
        """Move an active escrow to ``completed`` or ``refunded``.

        Exactly one of several concurrent resolvers wins. A replay of the
        winning request (same target and resolve_tx_id) returns the stored row
        with ``changed=False``; anything else raises InvalidTransitionError.
        """
        if status not in _ESCROW_STATUSES:
            raise VeilValidationError("Unknown escrow status", field="status")

        source = source_state_for(status)
        if source is None:
            current = await self.get_escrow(purchase_commitment)
            raise InvalidTransitionError(
                "Escrow", purchase_commitment, current.status, status
            )

        result = await self._store.transition_escrow(
            purchase_commitment,
            from_status=source,
            to_status=status,
            resolve_tx_id=resolve_tx_id,
            receipt_status=RECEIPT_STATUS_ON_RESOLVE.get(status),
        )
        if result is None:
            raise VeilNotFoundError("Escrow", purchase_commitment)

        if result.changed:
            logger.info("Escrow %s resolved as %s", purchase_commitment, status)
            return result

        current = result.record
        if current.status == status and current.resolve_tx_id == resolve_tx_id:
            return result
        logger.warning(
            "Rejected escrow transition %s: %s -> %s",
            purchase_commitment,
            current.status,
            status,
        )
        raise InvalidTransitionError("Escrow", purchase_commitment, current.status, status)

    # -- loyalty -----------------------------------------------------------

    async def record_loyalty(self, record: LoyaltyRecord) -> UpsertResult[LoyaltyRecord]:
        """Append a loyalty claim, keyed by nullifier (or tx id when absent)."""
        _require_hash(record.address_hash, "address_hash")
        record.tx_id = _require_text(record.tx_id, "tx_id")
        _require_amount(record.score, "score")
        _require_amount(record.total_spent, "total_spent")

        result = await self._store.append_loyalty(record)
        if not result.created and result.record.address_hash != record.address_hash:
            raise VeilConflictError(
                "Loyalty claim key already used by another identity",
                details={"claim_key": record.claim_key},
            )
        return result

    async def list_loyalty(
        self, address_hash: str, limit: Optional[int] = DEFAULT_LIST_LIMIT
    ) -> list[LoyaltyRecord]:
        return await self._store.list_loyalty(address_hash, limit)

    # -- pending transactions ---------------------------------------------

    async def register_pending_tx(
        self,
        tx_id: str,
        address_hash: str,
        kind: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> UpsertResult[PendingTransaction]:
        """Optimistically record a submitted transaction as ``pending``."""
        record = PendingTransaction(
            tx_id=_require_text(tx_id, "tx_id"),
            address_hash=_require_hash(address_hash, "address_hash"),
            kind=_require_text(kind, "kind"),
            metadata=dict(metadata or {}),
        )
        result = await self._store.upsert_pending_tx(record)
        if not result.created and result.record.address_hash != address_hash:
            raise VeilConflictError(
                "tx_id is already registered by another identity",
                details={"tx_id": tx_id},
            )
        return result

    async def get_pending_tx(self, tx_id: str) -> Optional[PendingTransaction]:
        return await self._store.get_pending_tx(tx_id)

    # -- merchants ---------------------------------------------------------

    async def register_merchant(
        self,
        address_hash: str,
        name: str,
        category: Optional[str] = None,
    ) -> UpsertResult[MerchantProfile]:
        """Get-or-create the display profile for a merchant identity."""
        profile = MerchantProfile(
            address_hash=_require_hash(address_hash, "address_hash"),
            name=_require_text(name, "name"),
            category=(category or "general").strip() or "general",
        )
        return await self._store.upsert_merchant(profile)

    async def get_merchant(self, address_hash: str) -> Optional[MerchantProfile]:
        return await self._store.get_merchant(address_hash)
