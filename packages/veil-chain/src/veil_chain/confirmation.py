"""
Transaction confirmation tracking against the external ledger.

Features:
- Single-shot confirmation lookups
- Bounded polling with a fixed interval and overall timeout
- Promotion of locally pending transactions to confirmed or failed
- Batch reconciliation of every pending transaction
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from veil_core.exceptions import UpstreamUnavailableError
from veil_core.models import PendingStatus, utcnow
from veil_core.storage import StorageBackend

from .rpc_client import ExternalLedger, is_rejected, parse_u64

logger = logging.getLogger(__name__)

# Floor for a single lookup so a zero timeout still gets one real attempt.
MIN_LOOKUP_SECONDS = 0.05


@dataclass
class ConfirmationSnapshot:
    """One observation of a transaction's settlement state."""
    tx_id: str
    confirmed: bool
    local_status: Optional[str]
    block_height: Optional[int]
    checked_at: datetime = field(default_factory=utcnow)
    rejected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "confirmed": self.confirmed,
            "rejected": self.rejected,
            "local_status": self.local_status,
            "block_height": self.block_height,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class ReconcileReport:
    checked: int = 0
    confirmed: int = 0
    failed: int = 0
    pending: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "checked": self.checked,
            "confirmed": self.confirmed,
            "failed": self.failed,
            "pending": self.pending,
        }


class ConfirmationReconciler:
    """Asks the external ledger whether transactions settled.

    Absence of a transaction is never proof of failure; only an explicit
    ``rejected`` inclusion moves a pending record to ``failed``.
    """

    def __init__(
        self,
        ledger: ExternalLedger,
        store: StorageBackend,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._ledger = ledger
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._monotonic = monotonic

    @property
    def ledger(self) -> ExternalLedger:
        return self._ledger

    async def _settle(self, tx_id: str, transaction: Dict[str, Any]) -> Optional[str]:
        """Apply an observed inclusion to the local pending record."""
        status = (
            PendingStatus.FAILED.value if is_rejected(transaction) else PendingStatus.CONFIRMED.value
        )
        settled = await self._store.settle_pending_tx(tx_id, status, self._clock())
        if settled is not None:
            logger.info(f"Pending transaction {tx_id} settled as {status}")
            return settled.status
        current = await self._store.get_pending_tx(tx_id)
        return current.status if current else None

    async def is_confirmed(self, tx_id: str) -> bool:
        """Single lookup; promotes the pending record when the ledger confirms.

        Raises:
            UpstreamUnavailableError: the ledger could not be asked
        """
        transaction = await self._ledger.get_transaction(tx_id)
        if transaction is None:
            return False
        await self._settle(tx_id, transaction)
        return not is_rejected(transaction)

    async def check(self, tx_id: str) -> ConfirmationSnapshot:
        """Snapshot the ledger's answer alongside the cached local status."""
        transaction = await self._ledger.get_transaction(tx_id)
        height = await self._ledger.get_latest_height()
        if transaction is not None:
            local_status = await self._settle(tx_id, transaction)
        else:
            pending = await self._store.get_pending_tx(tx_id)
            local_status = pending.status if pending else None
        return ConfirmationSnapshot(
            tx_id=tx_id,
            confirmed=transaction is not None and not is_rejected(transaction),
            rejected=transaction is not None and is_rejected(transaction),
            local_status=local_status,
            block_height=height,
            checked_at=self._clock(),
        )

    async def poll_until_confirmed(
        self,
        tx_id: str,
        timeout: float = 120.0,
        interval: float = 5.0,
    ) -> bool:
        """Poll every ``interval`` seconds until confirmed or ``timeout`` elapses.

        Returns False on timeout and leaves the pending record untouched.
        Upstream errors count as "not yet confirmed" for that attempt. Each
        lookup is cut off at the deadline, so a slow ledger cannot stretch the
        call past ``timeout`` (plus at most ``MIN_LOOKUP_SECONDS``).
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        deadline = self._monotonic() + max(timeout, 0.0)
        attempts = 0
        while True:
            attempts += 1
            budget = max(deadline - self._monotonic(), MIN_LOOKUP_SECONDS)
            try:
                transaction = await asyncio.wait_for(
                    self._ledger.get_transaction(tx_id), timeout=budget
                )
            except UpstreamUnavailableError as e:
                logger.warning(f"Confirmation lookup {attempts} for {tx_id} failed: {e}")
                transaction = None
            except asyncio.TimeoutError:
                logger.warning(
                    f"Confirmation lookup {attempts} for {tx_id} timed out after {budget:.2f}s"
                )
                transaction = None
            if transaction is not None:
                await self._settle(tx_id, transaction)
                if is_rejected(transaction):
                    logger.warning(f"Transaction {tx_id} was rejected by the ledger")
                    return False
                logger.info(f"Transaction {tx_id} confirmed after {attempts} lookups")
                return True

            remaining = deadline - self._monotonic()
            if remaining <= 0:
                logger.info(f"Transaction {tx_id} not confirmed within {timeout:.1f}s")
                return False
            await self._sleep(min(interval, remaining))

    async def reconcile_pending(self, limit: int = 100) -> ReconcileReport:
        """One single-shot check for each pending transaction."""
        report = ReconcileReport()
        pending = await self._store.list_pending_txs(
            status=PendingStatus.PENDING.value, limit=limit
        )
        for record in pending:
            report.checked += 1
            try:
                transaction = await self._ledger.get_transaction(record.tx_id)
            except UpstreamUnavailableError as e:
                logger.warning(f"Reconcile lookup for {record.tx_id} failed: {e}")
                transaction = None
            if transaction is None:
                report.pending += 1
                continue
            status = await self._settle(record.tx_id, transaction)
            if status == PendingStatus.FAILED.value:
                report.failed += 1
            elif status == PendingStatus.CONFIRMED.value:
                report.confirmed += 1
            else:
                report.pending += 1
        return report

    async def merchant_sales_total(self, merchant_address: str) -> Optional[int]:
        """Publicly published sales total, or None when unknown or unreachable."""
        try:
            value = await self._ledger.get_mapping_value("merchant_sales_total", merchant_address)
        except UpstreamUnavailableError:
            return None
        return parse_u64(value) if value is not None else 0

    async def is_nullifier_used(self, nullifier: str) -> bool:
        """Bookkeeping lookup of the published ``used_nullifiers`` mapping."""
        value = await self._ledger.get_mapping_value("used_nullifiers", nullifier)
        return value == "true"
