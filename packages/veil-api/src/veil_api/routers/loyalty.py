"""Loyalty claim routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field

from veil_chain.confirmation import ConfirmationReconciler
from veil_core.exceptions import VeilValidationError
from veil_core.models import LoyaltyRecord
from veil_ledger.projections import ProjectionService
from veil_ledger.records import EventLedger
from veil_protocol.credentials import Credential

from ..middleware.auth import optional_credential, require_credential

router = APIRouter(tags=["loyalty"])


class ClaimLoyaltyRequest(BaseModel):
    address_hash: Optional[str] = Field(
        None, min_length=64, max_length=64, description="Defaults to the caller's identity"
    )
    score: int = Field(..., ge=0)
    total_spent: int = Field(..., ge=0)
    tx_id: str = Field(..., min_length=1)
    purchase_commitment: Optional[str] = None
    nullifier: Optional[str] = None


class LoyaltyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    address_hash: str
    score: int
    total_spent: int
    tx_id: str
    purchase_commitment: Optional[str]
    nullifier: Optional[str]
    created_at: datetime


class LoyaltySummaryResponse(BaseModel):
    claims: List[Dict[str, Any]]
    aggregate: Dict[str, int]


class LoyaltyDependencies:
    """Dependencies for loyalty routes."""
    def __init__(
        self,
        ledger: EventLedger,
        projections: ProjectionService,
        reconciler: ConfirmationReconciler,
    ):
        self.ledger = ledger
        self.projections = projections
        self.reconciler = reconciler


def get_deps() -> LoyaltyDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


@router.post("/claim", response_model=LoyaltyResponse, status_code=status.HTTP_201_CREATED)
async def claim(
    request: ClaimLoyaltyRequest,
    response: Response,
    credential: Optional[Credential] = Depends(optional_credential),
    deps: LoyaltyDependencies = Depends(get_deps),
):
    """Record a loyalty claim or merge."""
    address_hash = request.address_hash or (credential.address_hash if credential else None)
    if not address_hash:
        raise VeilValidationError(
            "address_hash is required without a credential", field="address_hash"
        )
    result = await deps.ledger.record_loyalty(
        LoyaltyRecord(
            address_hash=address_hash,
            score=request.score,
            total_spent=request.total_spent,
            tx_id=request.tx_id,
            purchase_commitment=request.purchase_commitment,
            nullifier=request.nullifier,
        )
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return LoyaltyResponse.model_validate(result.record)


@router.get("/my", response_model=LoyaltySummaryResponse)
async def my_loyalty(
    credential: Credential = Depends(require_credential),
    deps: LoyaltyDependencies = Depends(get_deps),
):
    """Loyalty claims for the caller with computed aggregates."""
    return await deps.projections.loyalty_summary(credential.address_hash)


@router.get("/nullifier/{nullifier}")
async def nullifier_status(
    nullifier: str,
    deps: LoyaltyDependencies = Depends(get_deps),
):
    """Whether the ledger has published ``nullifier`` as used."""
    return {"nullifier": nullifier, "used": await deps.reconciler.is_nullifier_used(nullifier)}
