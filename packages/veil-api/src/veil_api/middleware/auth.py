"""Bearer credential dependencies."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from veil_core.exceptions import VeilAuthenticationError, VeilAuthorizationError
from veil_core.models import Role
from veil_protocol.credentials import Credential, CredentialIssuer

logger = logging.getLogger("veil.api.auth")

bearer_scheme = HTTPBearer(auto_error=False)


def get_credential_issuer() -> CredentialIssuer:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


async def optional_credential(
    authorization: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    issuer: CredentialIssuer = Depends(get_credential_issuer),
) -> Optional[Credential]:
    """Decode the bearer credential if one was sent.

    A present but invalid or expired credential is still rejected.
    """
    if authorization is None or not authorization.credentials:
        return None
    return issuer.verify(authorization.credentials)


async def require_credential(
    credential: Optional[Credential] = Depends(optional_credential),
) -> Credential:
    if credential is None:
        raise VeilAuthenticationError("Bearer credential required")
    return credential


async def require_merchant(
    credential: Credential = Depends(require_credential),
) -> Credential:
    if credential.role != Role.MERCHANT:
        logger.warning("Merchant endpoint called with %s credential", credential.role.value)
        raise VeilAuthorizationError("Merchant credential required")
    return credential
