"""Allowed status transitions for escrowed purchases."""
from __future__ import annotations

from veil_core.models import EscrowStatus, ReceiptStatus

# from-state -> reachable states
ESCROW_TRANSITIONS: dict[str, frozenset[str]] = {
    EscrowStatus.ACTIVE.value: frozenset(
        {EscrowStatus.COMPLETED.value, EscrowStatus.REFUNDED.value}
    ),
    EscrowStatus.COMPLETED.value: frozenset(),
    EscrowStatus.REFUNDED.value: frozenset(),
}

# Receipt status applied alongside an escrow resolution.
RECEIPT_STATUS_ON_RESOLVE: dict[str, str] = {
    EscrowStatus.COMPLETED.value: ReceiptStatus.COMPLETED.value,
    EscrowStatus.REFUNDED.value: ReceiptStatus.REFUNDED.value,
}

TERMINAL_ESCROW_STATES = frozenset(
    state for state, targets in ESCROW_TRANSITIONS.items() if not targets
)


def can_transition(current: str, target: str) -> bool:
    return target in ESCROW_TRANSITIONS.get(current, frozenset())


def source_state_for(target: str) -> str | None:
    """Return the only state ``target`` can be reached from, if any."""
    for state, targets in ESCROW_TRANSITIONS.items():
        if target in targets:
            return state
    return None
