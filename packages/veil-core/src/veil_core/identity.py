"""Wallet address validation and one-way identity hashing.

Ledger rows are joined on identity hashes so raw wallet addresses are never
persisted alongside sale, escrow or loyalty data.
"""
from __future__ import annotations

import hashlib
import re

from .exceptions import VeilValidationError

# aleo1 + 58 bech32 data characters
ADDRESS_PATTERN = re.compile(r"^aleo1[02-9ac-hj-np-z]{58}$")

IDENTITY_HASH_LENGTH = 64


def is_valid_address(address: str) -> bool:
    """Check that a string is a syntactically valid Aleo address."""
    return isinstance(address, str) and bool(ADDRESS_PATTERN.match(address))


def require_address(address: str, field: str = "address") -> str:
    """Return the address unchanged or raise VeilValidationError."""
    if not is_valid_address(address):
        raise VeilValidationError("Valid Aleo address required", field=field)
    return address


def hash_address(address: str) -> str:
    """Deterministic, keyless SHA-256 digest of a wallet address."""
    return hashlib.sha256(address.encode("utf-8")).hexdigest()


def is_identity_hash(value: str) -> bool:
    """Check that a string has the shape of an identity hash."""
    return (
        isinstance(value, str)
        and len(value) == IDENTITY_HASH_LENGTH
        and all(c in "0123456789abcdef" for c in value)
    )


__all__ = [
    "ADDRESS_PATTERN",
    "hash_address",
    "is_identity_hash",
    "is_valid_address",
    "require_address",
]
