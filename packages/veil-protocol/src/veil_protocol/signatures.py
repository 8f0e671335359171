"""Wallet signature checks for the login challenge."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from veil_core.identity import is_valid_address

SIGNATURE_PREFIX = "sign1"


@runtime_checkable
class SignatureVerifier(Protocol):
    def verify(self, address: str, message: str, signature: str) -> bool: ...


class StructuralSignatureVerifier:
    """Accepts well-formed Aleo signatures for a valid address.

    Cryptographic verification happens in the wallet and on the external
    ledger; this check only rejects inputs that cannot be signatures.
    """

    def __init__(self, min_length: int = 64):
        self.min_length = min_length

    def verify(self, address: str, message: str, signature: str) -> bool:
        if not message or not signature:
            return False
        if not is_valid_address(address):
            return False
        if not signature.startswith(SIGNATURE_PREFIX):
            return False
        return len(signature) >= self.min_length and signature.isalnum()
