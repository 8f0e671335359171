"""Wallet authentication endpoints."""
from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from veil_core.exceptions import AddressMismatchError, InvalidSignatureError
from veil_core.models import Role
from veil_protocol.credentials import Credential, CredentialIssuer
from veil_protocol.nonce_registry import NonceAuthenticator
from veil_protocol.signatures import SignatureVerifier

from ..middleware.auth import require_credential

logger = logging.getLogger("veil.api.auth")

router = APIRouter(tags=["auth"])


class NonceRequest(BaseModel):
    address: str = Field(..., description="Aleo address requesting a challenge")


class NonceResponse(BaseModel):
    nonce: str
    message: str
    expires_at: datetime


class VerifyRequest(BaseModel):
    nonce: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1, description="Wallet signature over the challenge")
    role: Role = Role.BUYER


class VerifyResponse(BaseModel):
    token: str
    address: str
    role: Role
    expires_at: datetime


class CredentialResponse(BaseModel):
    address: str
    address_hash: str
    role: Role
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_credential(cls, credential: Credential) -> "CredentialResponse":
        return cls(
            address=credential.address,
            address_hash=credential.address_hash,
            role=credential.role,
            issued_at=credential.issued_at,
            expires_at=credential.expires_at,
        )


class AuthDependencies:
    """Dependencies for auth routes."""
    def __init__(
        self,
        authenticator: NonceAuthenticator,
        issuer: CredentialIssuer,
        verifier: SignatureVerifier,
    ):
        self.authenticator = authenticator
        self.issuer = issuer
        self.verifier = verifier


def get_deps() -> AuthDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


@router.post("/nonce", response_model=NonceResponse)
async def request_nonce(
    request: NonceRequest,
    deps: AuthDependencies = Depends(get_deps),
):
    """Issue a one-time challenge for the wallet to sign."""
    challenge = await deps.authenticator.issue_nonce(request.address)
    return NonceResponse(
        nonce=challenge.nonce,
        message=challenge.message,
        expires_at=challenge.expires_at,
    )


@router.post("/verify", response_model=VerifyResponse)
async def verify_nonce(
    request: VerifyRequest,
    deps: AuthDependencies = Depends(get_deps),
):
    """Exchange a signed challenge for a bearer credential.

    The nonce is consumed before the signature is checked, so a failed
    attempt always requires a fresh challenge.
    """
    address = await deps.authenticator.verify_and_consume(request.nonce)
    if address != request.address:
        raise AddressMismatchError("Nonce was issued to a different address")

    message = deps.authenticator.challenge_message(request.nonce)
    if not deps.verifier.verify(address, message, request.signature):
        raise InvalidSignatureError("Signature does not verify for this challenge")

    issued = deps.issuer.issue_credential(address, request.role)
    logger.info("Issued %s credential", issued.credential.role.value)
    return VerifyResponse(
        token=issued.token,
        address=address,
        role=issued.credential.role,
        expires_at=issued.credential.expires_at,
    )


@router.get("/me", response_model=CredentialResponse)
async def whoami(credential: Credential = Depends(require_credential)):
    """Claims of the presented credential."""
    return CredentialResponse.from_credential(credential)
