"""Wallet authentication protocol: challenges, signatures and credentials."""

from .credentials import Credential, CredentialIssuer, IssuedCredential
from .nonce_registry import NonceAuthenticator, NonceChallenge, NonceConfig
from .signatures import SignatureVerifier, StructuralSignatureVerifier

__all__ = [
    "Credential",
    "CredentialIssuer",
    "IssuedCredential",
    "NonceAuthenticator",
    "NonceChallenge",
    "NonceConfig",
    "SignatureVerifier",
    "StructuralSignatureVerifier",
]
