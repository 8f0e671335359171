"""External ledger access and confirmation reconciliation."""

from .confirmation import ConfirmationReconciler, ConfirmationSnapshot, ReconcileReport
from .rpc_client import ExplorerLedgerClient, ExternalLedger, is_rejected, parse_u64
from .simulated import SimulatedLedger

__all__ = [
    "ConfirmationReconciler",
    "ConfirmationSnapshot",
    "ExplorerLedgerClient",
    "ExternalLedger",
    "ReconcileReport",
    "SimulatedLedger",
    "is_rejected",
    "parse_u64",
]
