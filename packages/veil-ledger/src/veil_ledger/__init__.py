"""
Veil Ledger - off-chain index of sale, escrow and loyalty events.

Example usage:

    from veil_core.storage import JsonFileStore
    from veil_ledger import EventLedger

    store = JsonFileStore("./data/veil.json")
    await store.initialize()
    ledger = EventLedger(store)

    result = await ledger.register_receipt(receipt)
    if not result.created:
        ...  # same sale was already indexed

    await ledger.resolve_escrow(commitment, "refunded", resolve_tx_id="at1...")
"""
from .projections import ProjectionService, loyalty_aggregate, merchant_stats
from .records import EventLedger
from .state_machine import ESCROW_TRANSITIONS, RECEIPT_STATUS_ON_RESOLVE, can_transition

__all__ = [
    "ESCROW_TRANSITIONS",
    "EventLedger",
    "ProjectionService",
    "RECEIPT_STATUS_ON_RESOLVE",
    "can_transition",
    "loyalty_aggregate",
    "merchant_stats",
]
