"""Signed bearer credentials asserting an authenticated address and role.

Credentials are self-contained HS256 JWTs. The service keeps no session
state; a credential is valid until its ``exp`` claim passes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import jwt

from veil_core.exceptions import CredentialExpiredError, InvalidCredentialError
from veil_core.identity import hash_address, is_valid_address
from veil_core.models import Role, utcnow

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Credential:
    """Decoded claims of a bearer credential."""
    address: str
    role: Role
    issued_at: datetime
    expires_at: datetime

    @property
    def address_hash(self) -> str:
        return hash_address(self.address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "role": self.role.value,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class IssuedCredential:
    token: str
    credential: Credential


class CredentialIssuer:
    """Mints and verifies credentials with a shared secret."""

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def issue_credential(self, address: str, role: Role | str) -> IssuedCredential:
        role = Role(role)
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self._ttl
        payload = {
            "sub": address,
            "address": address,
            "role": role.value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        return IssuedCredential(
            token=token,
            credential=Credential(
                address=address, role=role, issued_at=issued_at, expires_at=expires_at
            ),
        )

    def verify(self, token: str) -> Credential:
        """Decode ``token`` and return its claims.

        Raises:
            CredentialExpiredError: the credential's validity window has passed
            InvalidCredentialError: bad signature, malformed token or claims
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "iat", "address", "role"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise CredentialExpiredError("Credential has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidCredentialError("Invalid credential") from exc

        address = claims.get("address")
        if not is_valid_address(address):
            raise InvalidCredentialError("Invalid credential")
        try:
            role = Role(claims.get("role"))
        except ValueError as exc:
            raise InvalidCredentialError("Invalid credential") from exc

        return Credential(
            address=address,
            role=role,
            issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )
