"""Time-bound login challenges with one-time use semantics.

Each address holds at most one live nonce. Issuing a new one deletes the
previous nonce, and verification consumes the nonce through the store's
compare-and-set so that exactly one of several racing verifications wins.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from veil_core.exceptions import NonceExpiredError, NonceNotFoundError
from veil_core.identity import hash_address, require_address
from veil_core.models import AuthNonce, utcnow
from veil_core.storage import StorageBackend

logger = logging.getLogger("veil.protocol.nonce")

CHALLENGE_TEMPLATE = "Sign this nonce to authenticate: {nonce}"


@dataclass(slots=True)
class NonceConfig:
    """Configuration for nonce issuance."""
    ttl_seconds: int = 300  # 5 minutes
    random_bytes: int = 32


@dataclass(slots=True)
class NonceChallenge:
    nonce: str
    message: str
    expires_at: datetime


class NonceAuthenticator:
    """Issues and consumes wallet login challenges."""

    def __init__(
        self,
        store: StorageBackend,
        config: NonceConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self.config = config or NonceConfig()
        self._clock = clock

    @staticmethod
    def challenge_message(nonce: str) -> str:
        return CHALLENGE_TEMPLATE.format(nonce=nonce)

    async def issue_nonce(self, address: str) -> NonceChallenge:
        """Create a fresh nonce for ``address``, invalidating any earlier one.

        Raises:
            VeilValidationError: address is not a valid Aleo address
        """
        require_address(address)
        now = self._clock()

        purged = await self._store.purge_expired_nonces(now)
        if purged:
            logger.debug("Purged %d stale nonces", purged)

        record = AuthNonce(
            nonce=secrets.token_hex(self.config.random_bytes),
            address=address,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.config.ttl_seconds),
        )
        await self._store.replace_nonce(record)
        logger.info("Issued nonce for identity %s", hash_address(address)[:16])
        return NonceChallenge(
            nonce=record.nonce,
            message=self.challenge_message(record.nonce),
            expires_at=record.expires_at,
        )

    async def verify_and_consume(self, nonce: str, now: Optional[datetime] = None) -> str:
        """Consume ``nonce`` and return the address it was issued to.

        Raises:
            NonceNotFoundError: never issued, superseded, or already consumed
            NonceExpiredError: issued but past its TTL
        """
        if not nonce:
            raise NonceNotFoundError(nonce)
        stored = await self._store.consume_nonce(nonce)
        if stored is None:
            raise NonceNotFoundError(nonce)
        if stored.is_expired(now or self._clock()):
            raise NonceExpiredError(nonce)
        return stored.address
