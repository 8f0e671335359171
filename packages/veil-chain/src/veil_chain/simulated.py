"""In-memory external ledger used in dev and tests."""
from __future__ import annotations

import copy
from typing import Any, Dict, Optional

from veil_core.exceptions import UpstreamUnavailableError


class SimulatedLedger:
    """Deterministic stand-in for the explorer API.

    Transactions are invisible until ``include`` is called; ``set_available``
    simulates an outage.
    """

    def __init__(self, start_height: int = 0):
        self._height = start_height
        self._transactions: Dict[str, Dict[str, Any]] = {}
        self._mappings: Dict[str, Dict[str, str]] = {}
        self._available = True
        self.lookups = 0

    def set_available(self, available: bool) -> None:
        self._available = available

    def advance(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("blocks must be non-negative")
        self._height += blocks
        return self._height

    def include(
        self,
        tx_id: str,
        status: str = "accepted",
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Include ``tx_id`` in a new block and return its explorer view."""
        height = self.advance(1)
        transaction = {"id": tx_id, "status": status, "block_height": height}
        if payload:
            transaction.update(payload)
        self._transactions[tx_id] = transaction
        return copy.deepcopy(transaction)

    def set_mapping(self, name: str, key: str, value: Optional[str]) -> None:
        mapping = self._mappings.setdefault(name, {})
        if value is None:
            mapping.pop(key, None)
        else:
            mapping[key] = value

    def _check_available(self) -> None:
        if not self._available:
            raise UpstreamUnavailableError("Simulated ledger is offline")

    async def get_transaction(self, tx_id: str) -> Optional[Dict[str, Any]]:
        self.lookups += 1
        self._check_available()
        transaction = self._transactions.get(tx_id)
        return copy.deepcopy(transaction) if transaction else None

    async def get_latest_height(self) -> int:
        self._check_available()
        return self._height

    async def get_mapping_value(self, name: str, key: str) -> Optional[str]:
        self._check_available()
        return self._mappings.get(name, {}).get(key)

    async def close(self) -> None:
        return None
