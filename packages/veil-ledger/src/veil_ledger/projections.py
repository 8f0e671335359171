"""Read-side aggregates computed over the event ledger."""
from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from veil_core.models import (
    LoyaltyRecord,
    MerchantProfile,
    PurchaseType,
    ReceiptRecord,
    ReceiptStatus,
    Role,
)
from veil_core.storage import StorageBackend

RECENT_RECEIPTS = 20


def _count(receipts: Iterable[ReceiptRecord], predicate) -> int:
    return sum(1 for r in receipts if predicate(r))


def merchant_stats(
    receipts: Sequence[ReceiptRecord],
    profile: Optional[MerchantProfile] = None,
    on_chain_sales_total: Optional[int] = None,
) -> dict[str, Any]:
    """Dashboard numbers for one merchant.

    ``receipts`` must be newest-first. Receipts without a purchase type fall
    back to their status when classified.
    """
    escrow_states = {ReceiptStatus.ESCROWED.value, ReceiptStatus.COMPLETED.value}
    return {
        "totalRevenue": sum(r.total for r in receipts),
        "totalReceipts": len(receipts),
        "activeEscrows": _count(receipts, lambda r: r.status == ReceiptStatus.ESCROWED.value),
        "privateSales": _count(
            receipts,
            lambda r: r.purchase_type == PurchaseType.PRIVATE.value
            or (r.purchase_type is None and r.status == ReceiptStatus.CONFIRMED.value),
        ),
        "publicSales": _count(receipts, lambda r: r.purchase_type == PurchaseType.PUBLIC.value),
        "escrowSales": _count(
            receipts,
            lambda r: r.purchase_type == PurchaseType.ESCROW.value or r.status in escrow_states,
        ),
        "refunds": _count(receipts, lambda r: r.status == ReceiptStatus.REFUNDED.value),
        "recentReceipts": [r.to_dict() for r in receipts[:RECENT_RECEIPTS]],
        "profile": profile.to_dict() if profile else None,
        "onChainSalesTotal": on_chain_sales_total,
    }


def loyalty_aggregate(claims: Sequence[LoyaltyRecord]) -> dict[str, int]:
    """``claims`` must be newest-first; the latest score is the newest claim's."""
    return {
        "totalClaims": len(claims),
        "totalSpent": sum(c.total_spent for c in claims),
        "latestScore": claims[0].score if claims else 0,
    }


class ProjectionService:
    """Loads ledger rows and feeds them to the aggregate functions."""

    def __init__(self, store: StorageBackend):
        self._store = store

    async def merchant_dashboard(
        self,
        merchant_hash: str,
        on_chain_sales_total: Optional[int] = None,
    ) -> dict[str, Any]:
        receipts = await self._store.list_receipts(merchant_hash, Role.MERCHANT, limit=None)
        profile = await self._store.get_merchant(merchant_hash)
        return merchant_stats(receipts, profile, on_chain_sales_total)

    async def loyalty_summary(self, address_hash: str) -> dict[str, Any]:
        claims = await self._store.list_loyalty(address_hash, limit=None)
        return {
            "claims": [c.to_dict() for c in claims],
            "aggregate": loyalty_aggregate(claims),
        }
