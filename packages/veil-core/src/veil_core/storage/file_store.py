"""Whole-file JSON store for development.

The entire ledger lives in one JSON document that is loaded at startup and
rewritten after every mutation. All writes go through a single asyncio.Lock,
which makes this backend single-writer per process. Running more than one
service instance against the same file requires a distributed lock instead.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from ..exceptions import StorageUnavailableError
from ..models import (
    AuthNonce,
    EscrowRecord,
    LoyaltyRecord,
    MerchantProfile,
    PendingStatus,
    PendingTransaction,
    ReceiptRecord,
    ReceiptStatus,
    Role,
    TransitionResult,
    UpsertResult,
    utcnow,
)
from .base import DEFAULT_LIST_LIMIT, StorageBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

DOCUMENT_VERSION = 1

# collection name -> (record type, natural key attribute)
COLLECTIONS: dict[str, tuple[type, str]] = {
    "auth_nonces": (AuthNonce, "nonce"),
    "receipts": (ReceiptRecord, "purchase_commitment"),
    "escrows": (EscrowRecord, "purchase_commitment"),
    "loyalty": (LoyaltyRecord, "claim_key"),
    "pending_txs": (PendingTransaction, "tx_id"),
    "merchants": (MerchantProfile, "address_hash"),
}


def _path_from_dsn(dsn: str) -> Path:
    if dsn.startswith("file://"):
        dsn = dsn.removeprefix("file://")
    return Path(dsn)


def _newest_first(records: list, limit: Optional[int]) -> list:
    # Insertion order breaks created_at ties.
    ordered = sorted(reversed(records), key=lambda r: r.created_at, reverse=True)
    return [copy.deepcopy(r) for r in ordered[:limit]]


class JsonFileStore(StorageBackend):
    """Flat-file backend with a serialized write path."""

    name = "file"

    def __init__(self, path: str | Path):
        self._path = _path_from_dsn(str(path))
        self._lock = asyncio.Lock()
        self._data: dict[str, dict[str, Any]] = {name: {} for name in COLLECTIONS}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._load_from_disk)
            except (OSError, ValueError) as exc:
                raise StorageUnavailableError(
                    f"Cannot open ledger file {self._path}: {exc}"
                ) from exc
            self._loaded = True
        logger.info("JSON ledger store ready at %s", self._path)

    async def close(self) -> None:
        self._loaded = False

    async def ping(self) -> bool:
        return self._loaded and self._path.parent.exists()

    def _load_from_disk(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._flush(self._dump())
            return
        with self._path.open("r", encoding="utf-8") as fh:
            document = json.load(fh)
        self._load_document(document)

    def _load_document(self, document: dict[str, Any]) -> None:
        data: dict[str, dict[str, Any]] = {}
        for name, (record_type, key_attr) in COLLECTIONS.items():
            rows = document.get(name, [])
            records = [record_type.from_dict(row) for row in rows]
            data[name] = {getattr(r, key_attr): r for r in records}
        self._data = data

    def _dump(self) -> dict[str, Any]:
        document: dict[str, Any] = {"version": DOCUMENT_VERSION}
        for name in COLLECTIONS:
            document[name] = [r.to_dict() for r in self._data[name].values()]
        return document

    def _flush(self, document: dict[str, Any]) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _write(self, mutate: Callable[[], tuple[T, bool]]) -> T:
        """Run ``mutate`` inside the store's critical section.

        ``mutate`` returns ``(result, changed)``; the document is only
        rewritten when something changed.
        """
        async with self._lock:
            before = self._dump()
            result, changed = mutate()
            if not changed:
                return result
            try:
                await asyncio.to_thread(self._flush, self._dump())
            except OSError as exc:
                self._load_document(before)
                raise StorageUnavailableError(
                    f"Failed to persist ledger file {self._path}: {exc}"
                ) from exc
            return result

    def _insert_if_absent(
        self, collection: str, key: str, record: T
    ) -> tuple[UpsertResult[T], bool]:
        table = self._data[collection]
        existing = table.get(key)
        if existing is not None:
            return UpsertResult(created=False, record=copy.deepcopy(existing)), False
        table[key] = copy.deepcopy(record)
        return UpsertResult(created=True, record=copy.deepcopy(record)), True

    # -- auth nonces -------------------------------------------------------

    async def replace_nonce(self, nonce: AuthNonce) -> AuthNonce:
        def mutate() -> tuple[AuthNonce, bool]:
            table = self._data["auth_nonces"]
            for key in [k for k, n in table.items() if n.address == nonce.address]:
                del table[key]
            table[nonce.nonce] = copy.deepcopy(nonce)
            return copy.deepcopy(nonce), True

        return await self._write(mutate)

    async def consume_nonce(self, nonce: str) -> Optional[AuthNonce]:
        def mutate() -> tuple[Optional[AuthNonce], bool]:
            stored = self._data["auth_nonces"].get(nonce)
            if stored is None or stored.consumed:
                return None, False
            stored.consumed = True
            return copy.deepcopy(stored), True

        return await self._write(mutate)

    async def purge_expired_nonces(self, now: datetime) -> int:
        def mutate() -> tuple[int, bool]:
            table = self._data["auth_nonces"]
            stale = [k for k, n in table.items() if n.consumed or n.expires_at <= now]
            for key in stale:
                del table[key]
            return len(stale), bool(stale)

        return await self._write(mutate)

    # -- receipts ----------------------------------------------------------

    async def upsert_receipt(self, record: ReceiptRecord) -> UpsertResult[ReceiptRecord]:
        return await self._write(
            lambda: self._insert_if_absent("receipts", record.purchase_commitment, record)
        )

    async def get_receipt(self, purchase_commitment: str) -> Optional[ReceiptRecord]:
        record = self._data["receipts"].get(purchase_commitment)
        return copy.deepcopy(record) if record else None

    async def list_receipts(
        self,
        identity_hash: str,
        role: Role,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[ReceiptRecord]:
        attr = "merchant_address_hash" if role == Role.MERCHANT else "buyer_address_hash"
        rows = [r for r in self._data["receipts"].values() if getattr(r, attr) == identity_hash]
        return _newest_first(rows, limit)

    # -- escrow ------------------------------------------------------------

    async def upsert_escrow(self, record: EscrowRecord) -> UpsertResult[EscrowRecord]:
        return await self._write(
            lambda: self._insert_if_absent("escrows", record.purchase_commitment, record)
        )

    async def get_escrow(self, purchase_commitment: str) -> Optional[EscrowRecord]:
        record = self._data["escrows"].get(purchase_commitment)
        return copy.deepcopy(record) if record else None

    async def list_escrows(
        self,
        identity_hash: str,
        role: Role,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[EscrowRecord]:
        attr = "merchant_address_hash" if role == Role.MERCHANT else "buyer_address_hash"
        rows = [r for r in self._data["escrows"].values() if getattr(r, attr) == identity_hash]
        return _newest_first(rows, limit)

    async def transition_escrow(
        self,
        purchase_commitment: str,
        from_status: str,
        to_status: str,
        resolve_tx_id: Optional[str],
        receipt_status: Optional[str] = None,
    ) -> Optional[TransitionResult[EscrowRecord]]:
        def mutate() -> tuple[Optional[TransitionResult[EscrowRecord]], bool]:
            escrow = self._data["escrows"].get(purchase_commitment)
            if escrow is None:
                return None, False
            if escrow.status != from_status:
                return TransitionResult(changed=False, record=copy.deepcopy(escrow)), False
            now = utcnow()
            escrow.status = to_status
            escrow.resolve_tx_id = resolve_tx_id
            escrow.resolved_at = now
            if receipt_status:
                receipt = self._data["receipts"].get(purchase_commitment)
                if receipt is not None and receipt.status == ReceiptStatus.ESCROWED.value:
                    receipt.status = receipt_status
                    receipt.updated_at = now
            return TransitionResult(changed=True, record=copy.deepcopy(escrow)), True

        return await self._write(mutate)

    # -- loyalty -----------------------------------------------------------

    async def append_loyalty(self, record: LoyaltyRecord) -> UpsertResult[LoyaltyRecord]:
        return await self._write(
            lambda: self._insert_if_absent("loyalty", record.claim_key, record)
        )

    async def list_loyalty(
        self,
        address_hash: str,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[LoyaltyRecord]:
        rows = [r for r in self._data["loyalty"].values() if r.address_hash == address_hash]
        return _newest_first(rows, limit)

    # -- pending transactions ---------------------------------------------

    async def upsert_pending_tx(
        self, record: PendingTransaction
    ) -> UpsertResult[PendingTransaction]:
        return await self._write(
            lambda: self._insert_if_absent("pending_txs", record.tx_id, record)
        )

    async def get_pending_tx(self, tx_id: str) -> Optional[PendingTransaction]:
        record = self._data["pending_txs"].get(tx_id)
        return copy.deepcopy(record) if record else None

    async def list_pending_txs(
        self,
        status: Optional[str] = None,
        address_hash: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[PendingTransaction]:
        rows = list(self._data["pending_txs"].values())
        if status:
            rows = [r for r in rows if r.status == status]
        if address_hash:
            rows = [r for r in rows if r.address_hash == address_hash]
        return _newest_first(rows, limit)

    async def settle_pending_tx(
        self,
        tx_id: str,
        status: str,
        at: datetime,
    ) -> Optional[PendingTransaction]:
        def mutate() -> tuple[Optional[PendingTransaction], bool]:
            record = self._data["pending_txs"].get(tx_id)
            if record is None or record.status != PendingStatus.PENDING.value:
                return None, False
            record.status = status
            record.updated_at = at
            if status == PendingStatus.CONFIRMED.value:
                record.confirmed_at = at
            return copy.deepcopy(record), True

        return await self._write(mutate)

    # -- merchants ---------------------------------------------------------

    async def upsert_merchant(self, profile: MerchantProfile) -> UpsertResult[MerchantProfile]:
        return await self._write(
            lambda: self._insert_if_absent("merchants", profile.address_hash, profile)
        )

    async def get_merchant(self, address_hash: str) -> Optional[MerchantProfile]:
        record = self._data["merchants"].get(address_hash)
        return copy.deepcopy(record) if record else None


__all__ = ["JsonFileStore"]
