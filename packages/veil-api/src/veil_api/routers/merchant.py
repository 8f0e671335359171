"""Merchant profile and dashboard routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field

from veil_chain.confirmation import ConfirmationReconciler
from veil_ledger.projections import ProjectionService
from veil_ledger.records import EventLedger
from veil_protocol.credentials import Credential

from ..middleware.auth import require_merchant

router = APIRouter(tags=["merchant"])


class RegisterMerchantRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Business name")
    category: Optional[str] = Field(None, max_length=100)


class MerchantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    address_hash: str
    name: str
    category: str
    created_at: datetime


class MerchantStatsResponse(BaseModel):
    totalRevenue: int
    totalReceipts: int
    activeEscrows: int
    privateSales: int
    publicSales: int
    escrowSales: int
    refunds: int
    recentReceipts: List[Dict[str, Any]]
    profile: Optional[Dict[str, Any]] = None
    onChainSalesTotal: Optional[int] = None


class MerchantDependencies:
    """Dependencies for merchant routes."""
    def __init__(
        self,
        ledger: EventLedger,
        projections: ProjectionService,
        reconciler: ConfirmationReconciler,
    ):
        self.ledger = ledger
        self.projections = projections
        self.reconciler = reconciler


def get_deps() -> MerchantDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


@router.post("/register", response_model=MerchantResponse, status_code=status.HTTP_201_CREATED)
async def register_merchant(
    request: RegisterMerchantRequest,
    response: Response,
    credential: Credential = Depends(require_merchant),
    deps: MerchantDependencies = Depends(get_deps),
):
    """Get-or-create the caller's merchant profile."""
    result = await deps.ledger.register_merchant(
        credential.address_hash, request.name, request.category
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return MerchantResponse.model_validate(result.record)


async def _dashboard(credential: Credential, deps: MerchantDependencies) -> Dict[str, Any]:
    on_chain_total = await deps.reconciler.merchant_sales_total(credential.address)
    return await deps.projections.merchant_dashboard(credential.address_hash, on_chain_total)


@router.get("/stats", response_model=MerchantStatsResponse)
async def merchant_stats(
    credential: Credential = Depends(require_merchant),
    deps: MerchantDependencies = Depends(get_deps),
):
    """Sales analytics for the calling merchant."""
    return await _dashboard(credential, deps)


@router.get("/dashboard", response_model=MerchantStatsResponse)
async def merchant_dashboard(
    credential: Credential = Depends(require_merchant),
    deps: MerchantDependencies = Depends(get_deps),
):
    return await _dashboard(credential, deps)
