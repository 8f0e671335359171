"""Tests for idempotent registration and escrow resolution."""
from __future__ import annotations

import asyncio

import pytest

from veil_core.exceptions import (
    InvalidTransitionError,
    VeilConflictError,
    VeilNotFoundError,
    VeilValidationError,
)
from veil_core.models import EscrowRecord, LoyaltyRecord, ReceiptRecord, Role


def receipt(commitment, buyer, merchant, total=5_000_000, **kwargs) -> ReceiptRecord:
    return ReceiptRecord(
        purchase_commitment=commitment,
        buyer_address_hash=buyer,
        merchant_address_hash=merchant,
        total=total,
        **kwargs,
    )


def escrow(commitment, buyer, merchant, total=10_000_000, **kwargs) -> EscrowRecord:
    return EscrowRecord(
        purchase_commitment=commitment,
        buyer_address_hash=buyer,
        merchant_address_hash=merchant,
        total=total,
        **kwargs,
    )


class TestReceipts:
    async def test_duplicate_coalesces(self, ledger, buyer_hash, merchant_hash):
        first = await ledger.register_receipt(receipt("c1", buyer_hash, merchant_hash))
        second = await ledger.register_receipt(receipt("c1", buyer_hash, merchant_hash))

        assert first.created
        assert not second.created
        assert second.record.id == first.record.id
        assert len(await ledger.list_receipts(merchant_hash, Role.MERCHANT)) == 1

    async def test_same_key_different_sale_conflicts(self, ledger, buyer_hash, merchant_hash):
        await ledger.register_receipt(receipt("c1", buyer_hash, merchant_hash, total=1))
        with pytest.raises(VeilConflictError):
            await ledger.register_receipt(receipt("c1", buyer_hash, merchant_hash, total=2))

    async def test_commitment_is_stripped(self, ledger, buyer_hash, merchant_hash):
        result = await ledger.register_receipt(receipt("  c1 ", buyer_hash, merchant_hash))
        assert result.record.purchase_commitment == "c1"

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"purchase_commitment": ""}, "purchase_commitment"),
            ({"buyer_address_hash": "aleo1" + "q" * 58}, "buyer_address_hash"),
            ({"merchant_address_hash": "short"}, "merchant_address_hash"),
            ({"total": -1}, "total"),
            ({"total": 1.5}, "total"),
            ({"token_type": 7}, "token_type"),
            ({"status": "lost"}, "status"),
            ({"purchase_type": "barter"}, "purchase_type"),
        ],
    )
    async def test_validation(self, ledger, buyer_hash, merchant_hash, overrides, field):
        record = receipt("c1", buyer_hash, merchant_hash)
        for key, value in overrides.items():
            setattr(record, key, value)

        with pytest.raises(VeilValidationError) as exc_info:
            await ledger.register_receipt(record)
        assert exc_info.value.details["field"] == field

    async def test_missing_receipt(self, ledger):
        with pytest.raises(VeilNotFoundError):
            await ledger.get_receipt("nope")


class TestEscrowResolution:
    async def test_open_forces_active(self, ledger, buyer_hash, merchant_hash):
        result = await ledger.open_escrow(
            escrow("e1", buyer_hash, merchant_hash, status="refunded", resolve_tx_id="x")
        )
        assert result.record.status == "active"
        assert result.record.resolve_tx_id is None

    async def test_duplicate_deposit_conflict(self, ledger, buyer_hash, merchant_hash, other_hash):
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))
        again = await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))
        assert not again.created
        with pytest.raises(VeilConflictError):
            await ledger.open_escrow(escrow("e1", other_hash, merchant_hash))

    async def test_refund_syncs_receipt(self, ledger, buyer_hash, merchant_hash):
        await ledger.register_receipt(
            receipt("e1", buyer_hash, merchant_hash, total=10_000_000, status="escrowed")
        )
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))

        result = await ledger.resolve_escrow("e1", "refunded", "at1refund")
        assert result.changed
        assert (await ledger.get_escrow("e1")).status == "refunded"
        assert (await ledger.get_receipt("e1")).status == "refunded"

    async def test_completed_cannot_be_refunded(self, ledger, buyer_hash, merchant_hash):
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))
        await ledger.resolve_escrow("e1", "completed", "at1done")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await ledger.resolve_escrow("e1", "refunded", "at1refund")
        assert exc_info.value.current_status == "completed"
        assert exc_info.value.http_status == 409

    async def test_identical_replay_is_unchanged(self, ledger, buyer_hash, merchant_hash):
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))
        await ledger.resolve_escrow("e1", "completed", "at1done")

        replay = await ledger.resolve_escrow("e1", "completed", "at1done")
        assert not replay.changed
        assert replay.record.status == "completed"

    async def test_replay_with_other_tx_is_rejected(self, ledger, buyer_hash, merchant_hash):
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))
        await ledger.resolve_escrow("e1", "completed", "at1done")
        with pytest.raises(InvalidTransitionError):
            await ledger.resolve_escrow("e1", "completed", "at1other")

    async def test_cannot_return_to_active(self, ledger, buyer_hash, merchant_hash):
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))
        with pytest.raises(InvalidTransitionError):
            await ledger.resolve_escrow("e1", "active")

    async def test_unknown_status(self, ledger):
        with pytest.raises(VeilValidationError):
            await ledger.resolve_escrow("e1", "cancelled")

    async def test_unknown_escrow(self, ledger):
        with pytest.raises(VeilNotFoundError):
            await ledger.resolve_escrow("missing", "completed")

    async def test_concurrent_resolution_has_one_winner(self, ledger, buyer_hash, merchant_hash):
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))

        results = await asyncio.gather(
            ledger.resolve_escrow("e1", "completed", "at1a"),
            ledger.resolve_escrow("e1", "refunded", "at1b"),
            return_exceptions=True,
        )
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(successes) == 1 and successes[0].changed
        assert len(failures) == 1
        assert (await ledger.get_escrow("e1")).status == successes[0].record.status

    async def test_list_by_role(self, ledger, buyer_hash, merchant_hash):
        await ledger.open_escrow(escrow("e1", buyer_hash, merchant_hash))
        assert len(await ledger.list_escrows(buyer_hash)) == 1
        assert len(await ledger.list_escrows(merchant_hash, Role.MERCHANT)) == 1
        assert await ledger.list_escrows(merchant_hash) == []


class TestLoyalty:
    async def test_nullifier_is_claim_key(self, ledger, buyer_hash):
        first = await ledger.record_loyalty(
            LoyaltyRecord(address_hash=buyer_hash, score=3, total_spent=30, tx_id="at1", nullifier="nf")
        )
        again = await ledger.record_loyalty(
            LoyaltyRecord(address_hash=buyer_hash, score=3, total_spent=30, tx_id="at9", nullifier="nf")
        )
        assert first.created and not again.created

    async def test_tx_id_is_fallback_key(self, ledger, buyer_hash):
        await ledger.record_loyalty(
            LoyaltyRecord(address_hash=buyer_hash, score=3, total_spent=30, tx_id="at1")
        )
        again = await ledger.record_loyalty(
            LoyaltyRecord(address_hash=buyer_hash, score=3, total_spent=30, tx_id="at1")
        )
        assert not again.created

    async def test_key_used_by_other_identity(self, ledger, buyer_hash, other_hash):
        await ledger.record_loyalty(
            LoyaltyRecord(address_hash=buyer_hash, score=1, total_spent=1, tx_id="at1", nullifier="nf")
        )
        with pytest.raises(VeilConflictError):
            await ledger.record_loyalty(
                LoyaltyRecord(address_hash=other_hash, score=1, total_spent=1, tx_id="at2", nullifier="nf")
            )

    async def test_tx_id_required(self, ledger, buyer_hash):
        with pytest.raises(VeilValidationError):
            await ledger.record_loyalty(
                LoyaltyRecord(address_hash=buyer_hash, score=1, total_spent=1, tx_id="")
            )


class TestPendingAndMerchants:
    async def test_pending_registration_is_idempotent(self, ledger, buyer_hash, other_hash):
        first = await ledger.register_pending_tx("at1", buyer_hash, "purchase", {"total": 5})
        again = await ledger.register_pending_tx("at1", buyer_hash, "purchase")
        assert first.created and not again.created
        assert again.record.metadata == {"total": 5}
        assert again.record.status == "pending"

        with pytest.raises(VeilConflictError):
            await ledger.register_pending_tx("at1", other_hash, "purchase")

    async def test_merchant_get_or_create(self, ledger, merchant_hash):
        first = await ledger.register_merchant(merchant_hash, "Corner Shop", "  ")
        assert first.record.category == "general"
        again = await ledger.register_merchant(merchant_hash, "Other")
        assert not again.created
        assert (await ledger.get_merchant(merchant_hash)).name == "Corner Shop"
