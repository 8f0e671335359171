"""Pending transaction and confirmation routes."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from veil_chain.confirmation import ConfirmationReconciler
from veil_core.models import PendingStatus
from veil_ledger.records import EventLedger
from veil_protocol.credentials import Credential

from ..middleware.auth import require_credential

logger = logging.getLogger("veil.api.transactions")

router = APIRouter(tags=["transactions"])


class RegisterTransactionRequest(BaseModel):
    tx_id: str = Field(..., min_length=1, description="External ledger transaction id")
    kind: str = Field(..., min_length=1, max_length=64, description="e.g. purchase, escrow, loyalty")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConfirmRequest(BaseModel):
    timeout_ms: Optional[int] = Field(None, ge=0)
    interval_ms: Optional[int] = Field(None, gt=0)


class PendingTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tx_id: str
    address_hash: str
    kind: str
    status: str
    metadata: Dict[str, Any]
    created_at: datetime
    confirmed_at: Optional[datetime]
    updated_at: datetime


class StatusResponse(BaseModel):
    tx_id: str
    confirmed: bool
    rejected: bool = False
    local_status: Optional[str]
    block_height: Optional[int]
    checked_at: datetime


class ConfirmResponse(BaseModel):
    tx_id: str
    confirmed: bool
    local_status: Optional[str]


class TransactionDependencies:
    """Dependencies for transaction routes."""
    def __init__(
        self,
        ledger: EventLedger,
        reconciler: ConfirmationReconciler,
        default_timeout_seconds: float = 120.0,
        default_interval_seconds: float = 5.0,
        max_timeout_seconds: float = 300.0,
    ):
        self.ledger = ledger
        self.reconciler = reconciler
        self.default_timeout_seconds = default_timeout_seconds
        self.default_interval_seconds = default_interval_seconds
        self.max_timeout_seconds = max_timeout_seconds


def get_deps() -> TransactionDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


@router.post("", response_model=PendingTransactionResponse, status_code=status.HTTP_201_CREATED)
async def register_transaction(
    request: RegisterTransactionRequest,
    response: Response,
    credential: Credential = Depends(require_credential),
    deps: TransactionDependencies = Depends(get_deps),
):
    """Record a submitted transaction as pending until the ledger confirms it."""
    result = await deps.ledger.register_pending_tx(
        request.tx_id, credential.address_hash, request.kind, request.metadata
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return PendingTransactionResponse.model_validate(result.record)


@router.get("/pending", response_model=List[PendingTransactionResponse])
async def list_pending(
    status_filter: Optional[PendingStatus] = Query(None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    credential: Credential = Depends(require_credential),
    deps: TransactionDependencies = Depends(get_deps),
):
    """The caller's registered transactions, newest first."""
    records = await deps.ledger.store.list_pending_txs(
        status=status_filter.value if status_filter else None,
        address_hash=credential.address_hash,
        limit=limit,
    )
    return [PendingTransactionResponse.model_validate(r) for r in records]


@router.post("/reconcile")
async def reconcile(
    limit: int = Query(default=100, ge=1, le=1000),
    credential: Credential = Depends(require_credential),
    deps: TransactionDependencies = Depends(get_deps),
):
    """Single-shot check of every pending transaction."""
    report = await deps.reconciler.reconcile_pending(limit)
    return report.to_dict()


@router.get("/{tx_id}/status", response_model=StatusResponse)
async def transaction_status(
    tx_id: str,
    deps: TransactionDependencies = Depends(get_deps),
):
    """Live confirmation snapshot from the external ledger."""
    snapshot = await deps.reconciler.check(tx_id)
    return StatusResponse(**snapshot.to_dict())


@router.post("/{tx_id}/confirm", response_model=ConfirmResponse)
async def confirm_transaction(
    tx_id: str,
    request: Optional[ConfirmRequest] = None,
    deps: TransactionDependencies = Depends(get_deps),
):
    """Poll the ledger until the transaction confirms or the timeout elapses."""
    timeout = deps.default_timeout_seconds
    interval = deps.default_interval_seconds
    if request and request.timeout_ms is not None:
        timeout = request.timeout_ms / 1000
    if request and request.interval_ms is not None:
        interval = request.interval_ms / 1000
    timeout = min(timeout, deps.max_timeout_seconds)

    confirmed = await deps.reconciler.poll_until_confirmed(tx_id, timeout=timeout, interval=interval)
    pending = await deps.ledger.get_pending_tx(tx_id)
    return ConfirmResponse(
        tx_id=tx_id,
        confirmed=confirmed,
        local_status=pending.status if pending else None,
    )
