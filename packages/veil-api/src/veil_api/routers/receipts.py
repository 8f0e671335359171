"""Receipt index routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from veil_core.identity import hash_address, is_valid_address
from veil_core.models import (
    PurchaseType,
    ReceiptRecord,
    ReceiptStatus,
    Role,
    TokenType,
)
from veil_ledger.records import EventLedger
from veil_protocol.credentials import Credential

from ..middleware.auth import require_credential

router = APIRouter(tags=["receipts"])

_TOKEN_NAMES = {"credits": TokenType.CREDITS.value, "usdcx": TokenType.USDCX.value}


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


class CreateReceiptRequest(BaseModel):
    """Receipt registration.

    Also accepts the storefront's camelCase form (``txId``, ``buyerAddress``,
    ``merchantAddress``, ``cartCommitment``, ``tokenType``, ``purchaseType``);
    raw addresses are hashed before anything is stored.
    """
    model_config = ConfigDict(extra="ignore")

    purchase_commitment: str = Field(..., min_length=1)
    buyer_address_hash: str = Field(..., min_length=64, max_length=64)
    merchant_address_hash: str = Field(..., min_length=64, max_length=64)
    total: int = Field(..., ge=0, description="Amount in micro-units")
    token_type: TokenType = TokenType.CREDITS
    cart_commitment: str = ""
    tx_id: str = ""
    status: ReceiptStatus = ReceiptStatus.CONFIRMED
    purchase_type: Optional[PurchaseType] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_storefront_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        body = dict(data)
        normalized = {
            "purchase_commitment": _first(
                body, "purchase_commitment", "purchaseCommitment", "cartCommitment", "cart_commitment"
            ),
            "cart_commitment": _first(body, "cart_commitment", "cartCommitment") or "",
            "tx_id": _first(body, "tx_id", "txId") or "",
            "total": body.get("total"),
            "status": _first(body, "status") or ReceiptStatus.CONFIRMED.value,
            "purchase_type": _first(body, "purchase_type", "purchaseType"),
        }

        for field, raw_key in (
            ("buyer_address_hash", "buyerAddress"),
            ("merchant_address_hash", "merchantAddress"),
        ):
            value = body.get(field)
            if not value and body.get(raw_key):
                if not is_valid_address(body[raw_key]):
                    raise ValueError(f"{raw_key} must be a valid Aleo address")
                value = hash_address(body[raw_key])
            normalized[field] = value

        token = body.get("token_type", body.get("tokenType"))
        if isinstance(token, str) and token.lower() in _TOKEN_NAMES:
            token = _TOKEN_NAMES[token.lower()]
        normalized["token_type"] = TokenType.CREDITS.value if token is None else token
        return normalized

    def to_record(self) -> ReceiptRecord:
        return ReceiptRecord(
            purchase_commitment=self.purchase_commitment,
            buyer_address_hash=self.buyer_address_hash,
            merchant_address_hash=self.merchant_address_hash,
            total=self.total,
            token_type=self.token_type.value,
            cart_commitment=self.cart_commitment,
            tx_id=self.tx_id,
            status=self.status.value,
            purchase_type=self.purchase_type.value if self.purchase_type else None,
        )


class ReceiptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    purchase_commitment: str
    buyer_address_hash: str
    merchant_address_hash: str
    total: int
    token_type: int
    cart_commitment: str
    tx_id: str
    status: str
    purchase_type: Optional[str]
    created_at: datetime
    updated_at: datetime


class ReceiptDependencies:
    """Dependencies for receipt routes."""
    def __init__(self, ledger: EventLedger):
        self.ledger = ledger


def get_deps() -> ReceiptDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


@router.post("", response_model=ReceiptResponse, status_code=status.HTTP_201_CREATED)
async def create_receipt(
    request: CreateReceiptRequest,
    response: Response,
    deps: ReceiptDependencies = Depends(get_deps),
):
    """Register receipt metadata after an on-chain purchase.

    Returns 201 for a new receipt and 200 with the stored receipt when the
    same sale was already registered.
    """
    result = await deps.ledger.register_receipt(request.to_record())
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return ReceiptResponse.model_validate(result.record)


@router.get("", response_model=List[ReceiptResponse])
async def list_receipts(
    role: Optional[Role] = Query(None, description="Side of the sale to match; defaults to the credential role"),
    limit: int = Query(default=100, ge=1, le=500),
    credential: Credential = Depends(require_credential),
    deps: ReceiptDependencies = Depends(get_deps),
):
    """Receipts where the caller is the buyer or merchant, newest first."""
    records = await deps.ledger.list_receipts(
        credential.address_hash, role or credential.role, limit
    )
    return [ReceiptResponse.model_validate(r) for r in records]


@router.get("/{purchase_commitment}", response_model=ReceiptResponse)
async def get_receipt(
    purchase_commitment: str,
    deps: ReceiptDependencies = Depends(get_deps),
):
    return ReceiptResponse.model_validate(await deps.ledger.get_receipt(purchase_commitment))
