"""
Read-only client for the external ledger's explorer API.

The explorer is treated as an eventually-consistent oracle: a 404 means
"the ledger does not know this yet" and is returned as ``None``, while
transport failures, timeouts and server errors raise
``UpstreamUnavailableError`` so callers can tell the two apart.
"""
from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx

from veil_core.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://api.explorer.provable.com/v1"

_U64_PATTERN = re.compile(r"^(\d+)u64$")


@runtime_checkable
class ExternalLedger(Protocol):
    """Operations consumed from the external ledger."""

    async def get_transaction(self, tx_id: str) -> Optional[Dict[str, Any]]: ...

    async def get_latest_height(self) -> int: ...

    async def get_mapping_value(self, name: str, key: str) -> Optional[str]: ...


def parse_u64(value: Optional[str]) -> Optional[int]:
    """Parse a ledger literal such as ``12345u64``."""
    if value is None:
        return None
    match = _U64_PATTERN.match(value.strip())
    return int(match.group(1)) if match else None


def is_rejected(transaction: Dict[str, Any]) -> bool:
    """Whether the ledger included ``transaction`` as rejected."""
    return str(transaction.get("status", "")).lower() == "rejected"


class ExplorerLedgerClient:
    """httpx-backed ExternalLedger for the public explorer REST API."""

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        network: str = "testnet",
        program_id: str = "veilreceipt_v3.aleo",
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = f"{rpc_url.rstrip('/')}/{network}"
        self._program_id = program_id
        self._timeout = timeout_seconds
        self._http_client = client
        self._owns_client = client is None

    @property
    def program_id(self) -> str:
        return self._program_id

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get(self, path: str) -> Optional[httpx.Response]:
        url = f"{self._base_url}{path}"
        start_time = time.time()
        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as e:
            latency_ms = (time.time() - start_time) * 1000
            logger.warning(f"Explorer request {path} failed after {latency_ms:.0f}ms: {e}")
            raise UpstreamUnavailableError(f"External ledger unreachable: {e}") from e

        latency_ms = (time.time() - start_time) * 1000
        if response.status_code == 404:
            logger.debug(f"Explorer {path} -> 404 in {latency_ms:.0f}ms")
            return None
        if response.status_code >= 400:
            logger.warning(f"Explorer {path} -> HTTP {response.status_code}")
            raise UpstreamUnavailableError(
                f"External ledger answered HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )
        logger.debug(f"Explorer {path} succeeded in {latency_ms:.0f}ms")
        return response

    async def get_transaction(self, tx_id: str) -> Optional[Dict[str, Any]]:
        """Confirmed view of ``tx_id``: ``status``, ``type`` and the inner ``transaction``.

        The plain ``/transaction/{id}`` route omits the accepted/rejected
        status, so the confirmed route is the one that can prove failure.
        """
        response = await self._get(f"/transaction/confirmed/{tx_id}")
        if response is None:
            return None
        try:
            confirmed = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError("External ledger returned invalid JSON") from e
        if not isinstance(confirmed, dict):
            raise UpstreamUnavailableError("External ledger returned an unexpected payload")
        # A rejected execution's inner transaction is its fee, with its own id.
        confirmed.setdefault("id", tx_id)
        return confirmed

    async def get_latest_height(self) -> int:
        response = await self._get("/latest/height")
        if response is None:
            raise UpstreamUnavailableError("External ledger has no latest height")
        try:
            return int(response.text.strip())
        except ValueError as e:
            raise UpstreamUnavailableError("External ledger returned invalid height") from e

    async def get_mapping_value(self, name: str, key: str) -> Optional[str]:
        response = await self._get(f"/program/{self._program_id}/mapping/{name}/{key}")
        if response is None:
            return None
        value = response.text.strip().strip('"')
        # The explorer answers "null" for a missing key on some networks.
        if not value or value == "null":
            return None
        return value
