"""Storage backend contract.

Both backends implement exactly this surface with the same observable
behaviour. Per-operation atomicity:

- ``replace_nonce``: delete every nonce for the address and insert the new one
  as one step, so at most one live nonce exists per address.
- ``consume_nonce``: compare-and-set ``consumed`` from False to True. Exactly
  one of any number of concurrent callers gets the row back.
- ``upsert_*`` / ``append_loyalty``: insert-if-absent on the natural key. A
  concurrent duplicate observes the winner's row with ``created=False``.
- ``transition_escrow``: compare-and-set on ``status``; the matching receipt is
  updated in the same step.
- ``settle_pending_tx``: compare-and-set from ``pending``.

List operations return newest rows first; a ``limit`` of None returns every
row.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..models import (
    AuthNonce,
    EscrowRecord,
    LoyaltyRecord,
    MerchantProfile,
    PendingTransaction,
    ReceiptRecord,
    Role,
    TransitionResult,
    UpsertResult,
)

DEFAULT_LIST_LIMIT = 100


class StorageBackend(ABC):
    """Persistence strategy for every ledger entity."""

    name: str = "abstract"

    # -- lifecycle ---------------------------------------------------------

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections / load state. Raises StorageUnavailableError."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""

    @abstractmethod
    async def ping(self) -> bool:
        """Cheap liveness check."""

    # -- auth nonces -------------------------------------------------------

    @abstractmethod
    async def replace_nonce(self, nonce: AuthNonce) -> AuthNonce:
        """Store a nonce, invalidating any other nonce for the same address."""

    @abstractmethod
    async def consume_nonce(self, nonce: str) -> Optional[AuthNonce]:
        """Atomically mark an unconsumed nonce consumed and return it.

        Returns None if the nonce is unknown or was already consumed. Expiry is
        judged by the caller on the returned row.
        """

    @abstractmethod
    async def purge_expired_nonces(self, now: datetime) -> int:
        """Delete nonces that expired or were consumed before ``now``."""

    # -- receipts ----------------------------------------------------------

    @abstractmethod
    async def upsert_receipt(self, record: ReceiptRecord) -> UpsertResult[ReceiptRecord]:
        ...

    @abstractmethod
    async def get_receipt(self, purchase_commitment: str) -> Optional[ReceiptRecord]:
        ...

    @abstractmethod
    async def list_receipts(
        self,
        identity_hash: str,
        role: Role,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[ReceiptRecord]:
        ...

    # -- escrow ------------------------------------------------------------

    @abstractmethod
    async def upsert_escrow(self, record: EscrowRecord) -> UpsertResult[EscrowRecord]:
        ...

    @abstractmethod
    async def get_escrow(self, purchase_commitment: str) -> Optional[EscrowRecord]:
        ...

    @abstractmethod
    async def list_escrows(
        self,
        identity_hash: str,
        role: Role,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[EscrowRecord]:
        ...

    @abstractmethod
    async def transition_escrow(
        self,
        purchase_commitment: str,
        from_status: str,
        to_status: str,
        resolve_tx_id: Optional[str],
        receipt_status: Optional[str] = None,
    ) -> Optional[TransitionResult[EscrowRecord]]:
        """Move an escrow from ``from_status`` to ``to_status``.

        Returns None when the escrow does not exist. When the escrow is not in
        ``from_status`` the unchanged row is returned with ``changed=False``.
        If ``receipt_status`` is given, a receipt with the same commitment in
        the ``escrowed`` state is moved to it in the same atomic step.
        """

    # -- loyalty -----------------------------------------------------------

    @abstractmethod
    async def append_loyalty(self, record: LoyaltyRecord) -> UpsertResult[LoyaltyRecord]:
        """Append a claim unless one with the same claim key exists."""

    @abstractmethod
    async def list_loyalty(
        self,
        address_hash: str,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[LoyaltyRecord]:
        ...

    # -- pending transactions ---------------------------------------------

    @abstractmethod
    async def upsert_pending_tx(
        self, record: PendingTransaction
    ) -> UpsertResult[PendingTransaction]:
        ...

    @abstractmethod
    async def get_pending_tx(self, tx_id: str) -> Optional[PendingTransaction]:
        ...

    @abstractmethod
    async def list_pending_txs(
        self,
        status: Optional[str] = None,
        address_hash: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[PendingTransaction]:
        ...

    @abstractmethod
    async def settle_pending_tx(
        self,
        tx_id: str,
        status: str,
        at: datetime,
    ) -> Optional[PendingTransaction]:
        """Move a pending record to a terminal status.

        Returns the updated row, or None if it does not exist or is no longer
        pending.
        """

    # -- merchants ---------------------------------------------------------

    @abstractmethod
    async def upsert_merchant(self, profile: MerchantProfile) -> UpsertResult[MerchantProfile]:
        ...

    @abstractmethod
    async def get_merchant(self, address_hash: str) -> Optional[MerchantProfile]:
        ...


__all__ = ["DEFAULT_LIST_LIMIT", "StorageBackend"]
