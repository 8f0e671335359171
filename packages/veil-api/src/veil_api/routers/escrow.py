"""Escrow lifecycle routes."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from veil_chain.confirmation import ConfirmationReconciler
from veil_core.exceptions import UpstreamUnavailableError
from veil_core.models import EscrowRecord
from veil_ledger.records import EventLedger
from veil_protocol.credentials import Credential

from ..middleware.auth import require_credential

logger = logging.getLogger("veil.api.escrow")

router = APIRouter(tags=["escrow"])


class CreateEscrowRequest(BaseModel):
    purchase_commitment: str = Field(..., min_length=1)
    buyer_address_hash: str = Field(..., min_length=64, max_length=64)
    merchant_address_hash: str = Field(..., min_length=64, max_length=64)
    total: int = Field(..., ge=0, description="Escrowed amount in micro-units")
    escrow_tx_id: str = ""
    created_block: Optional[int] = Field(None, ge=0)

    def to_record(self) -> EscrowRecord:
        return EscrowRecord(
            purchase_commitment=self.purchase_commitment,
            buyer_address_hash=self.buyer_address_hash,
            merchant_address_hash=self.merchant_address_hash,
            total=self.total,
            escrow_tx_id=self.escrow_tx_id,
            created_block=self.created_block,
        )


class ResolveEscrowRequest(BaseModel):
    purchase_commitment: str = Field(..., min_length=1)
    status: Literal["completed", "refunded"]
    resolve_tx_id: Optional[str] = None


class EscrowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    purchase_commitment: str
    buyer_address_hash: str
    merchant_address_hash: str
    total: int
    escrow_tx_id: str
    status: str
    resolve_tx_id: Optional[str]
    created_block: Optional[int]
    created_at: datetime
    resolved_at: Optional[datetime]


class EscrowDetailResponse(EscrowResponse):
    onChainStatus: Optional[Dict[str, Any]] = None


class ResolveEscrowResponse(BaseModel):
    success: bool
    changed: bool
    escrow: EscrowResponse


class EscrowDependencies:
    """Dependencies for escrow routes."""
    def __init__(self, ledger: EventLedger, reconciler: ConfirmationReconciler):
        self.ledger = ledger
        self.reconciler = reconciler


def get_deps() -> EscrowDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


@router.post("/deposit", response_model=EscrowResponse, status_code=status.HTTP_201_CREATED)
async def deposit(
    request: CreateEscrowRequest,
    response: Response,
    deps: EscrowDependencies = Depends(get_deps),
):
    """Record a new escrow deposit in the active state."""
    result = await deps.ledger.open_escrow(request.to_record())
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return EscrowResponse.model_validate(result.record)


@router.post("/resolve", response_model=ResolveEscrowResponse)
async def resolve(
    request: ResolveEscrowRequest,
    deps: EscrowDependencies = Depends(get_deps),
):
    """Complete or refund an active escrow."""
    result = await deps.ledger.resolve_escrow(
        request.purchase_commitment, request.status, request.resolve_tx_id
    )
    return ResolveEscrowResponse(
        success=True,
        changed=result.changed,
        escrow=EscrowResponse.model_validate(result.record),
    )


@router.get("/my", response_model=List[EscrowResponse])
async def my_escrows(
    limit: int = Query(default=100, ge=1, le=500),
    credential: Credential = Depends(require_credential),
    deps: EscrowDependencies = Depends(get_deps),
):
    """Escrows for the caller, matched on the side given by the credential role."""
    records = await deps.ledger.list_escrows(credential.address_hash, credential.role, limit)
    return [EscrowResponse.model_validate(r) for r in records]


@router.get("/{purchase_commitment}", response_model=EscrowDetailResponse)
async def get_escrow(
    purchase_commitment: str,
    deps: EscrowDependencies = Depends(get_deps),
):
    """Cached escrow state merged with a live lookup of its deposit transaction."""
    record = await deps.ledger.get_escrow(purchase_commitment)
    on_chain = None
    if record.escrow_tx_id:
        try:
            on_chain = (await deps.reconciler.check(record.escrow_tx_id)).to_dict()
        except UpstreamUnavailableError as e:
            logger.warning(f"On-chain lookup for escrow {purchase_commitment} failed: {e}")
    detail = EscrowDetailResponse.model_validate(record)
    detail.onChainStatus = on_chain
    return detail
