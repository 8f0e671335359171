"""Tests for dashboard and loyalty aggregates."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from veil_core.models import LoyaltyRecord, ReceiptRecord
from veil_core.storage.base import DEFAULT_LIST_LIMIT
from veil_ledger import can_transition, loyalty_aggregate, merchant_stats

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def make_receipt(i, merchant_hash, buyer_hash, total, status="confirmed", purchase_type=None):
    return ReceiptRecord(
        purchase_commitment=f"c{i}",
        buyer_address_hash=buyer_hash,
        merchant_address_hash=merchant_hash,
        total=total,
        status=status,
        purchase_type=purchase_type,
        created_at=T0 + timedelta(minutes=i),
    )


class TestMerchantStats:
    def test_classification(self, merchant_hash, buyer_hash):
        receipts = [
            make_receipt(5, merchant_hash, buyer_hash, 100, purchase_type="public"),
            make_receipt(4, merchant_hash, buyer_hash, 200, status="refunded", purchase_type="escrow"),
            make_receipt(3, merchant_hash, buyer_hash, 300, status="escrowed"),
            make_receipt(2, merchant_hash, buyer_hash, 400, status="completed"),
            make_receipt(1, merchant_hash, buyer_hash, 500),
        ]
        stats = merchant_stats(receipts)

        assert stats["totalRevenue"] == 1500
        assert stats["totalReceipts"] == 5
        assert stats["activeEscrows"] == 1
        assert stats["privateSales"] == 1
        assert stats["publicSales"] == 1
        assert stats["escrowSales"] == 3
        assert stats["refunds"] == 1
        assert stats["recentReceipts"][0]["purchase_commitment"] == "c5"
        assert stats["profile"] is None
        assert stats["onChainSalesTotal"] is None

    def test_recent_receipts_capped(self, merchant_hash, buyer_hash):
        receipts = [make_receipt(i, merchant_hash, buyer_hash, 1) for i in range(30, 0, -1)]
        assert len(merchant_stats(receipts)["recentReceipts"]) == 20

    def test_empty(self):
        stats = merchant_stats([], on_chain_sales_total=0)
        assert stats["totalRevenue"] == 0
        assert stats["onChainSalesTotal"] == 0


class TestLoyaltyAggregate:
    def test_latest_score_is_newest(self, buyer_hash):
        claims = [
            LoyaltyRecord(address_hash=buyer_hash, score=9, total_spent=10, tx_id="at2"),
            LoyaltyRecord(address_hash=buyer_hash, score=4, total_spent=5, tx_id="at1"),
        ]
        assert loyalty_aggregate(claims) == {"totalClaims": 2, "totalSpent": 15, "latestScore": 9}

    def test_empty(self):
        assert loyalty_aggregate([]) == {"totalClaims": 0, "totalSpent": 0, "latestScore": 0}


class TestProjectionService:
    async def test_dashboard_reads_store(self, ledger, projections, merchant_hash, buyer_hash):
        await ledger.register_merchant(merchant_hash, "Shop")
        await ledger.register_receipt(make_receipt(1, merchant_hash, buyer_hash, 700))

        dashboard = await projections.merchant_dashboard(merchant_hash, on_chain_sales_total=3)
        assert dashboard["totalRevenue"] == 700
        assert dashboard["profile"]["name"] == "Shop"
        assert dashboard["onChainSalesTotal"] == 3

    async def test_dashboard_totals_cover_every_receipt(
        self, store, projections, merchant_hash, buyer_hash
    ):
        count = DEFAULT_LIST_LIMIT + 5
        for i in range(count):
            await store.upsert_receipt(make_receipt(i, merchant_hash, buyer_hash, 2))

        dashboard = await projections.merchant_dashboard(merchant_hash)
        assert dashboard["totalReceipts"] == count
        assert dashboard["totalRevenue"] == 2 * count
        assert len(dashboard["recentReceipts"]) == 20

    async def test_loyalty_summary(self, ledger, projections, buyer_hash):
        await ledger.record_loyalty(
            LoyaltyRecord(address_hash=buyer_hash, score=2, total_spent=20, tx_id="at1", created_at=T0)
        )
        await ledger.record_loyalty(
            LoyaltyRecord(
                address_hash=buyer_hash,
                score=5,
                total_spent=30,
                tx_id="at2",
                created_at=T0 + timedelta(hours=1),
            )
        )
        summary = await projections.loyalty_summary(buyer_hash)
        assert summary["aggregate"] == {"totalClaims": 2, "totalSpent": 50, "latestScore": 5}
        assert summary["claims"][0]["tx_id"] == "at2"


class TestStateMachine:
    def test_only_active_moves(self):
        assert can_transition("active", "completed")
        assert can_transition("active", "refunded")
        assert not can_transition("completed", "refunded")
        assert not can_transition("refunded", "active")
        assert not can_transition("unknown", "completed")
