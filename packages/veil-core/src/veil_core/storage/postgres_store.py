"""PostgreSQL store for production.

Natural keys carry UNIQUE constraints; idempotent creates are a single
``INSERT ... ON CONFLICT DO NOTHING`` followed by a read of the surviving row,
and state transitions are conditional ``UPDATE ... RETURNING`` statements, so
row-level locking in PostgreSQL decides every race.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Optional

import asyncpg

from ..exceptions import StorageUnavailableError
from ..models import (
    AuthNonce,
    EscrowRecord,
    LoyaltyRecord,
    MerchantProfile,
    PendingStatus,
    PendingTransaction,
    ReceiptRecord,
    ReceiptStatus,
    Role,
    TransitionResult,
    UpsertResult,
)
from .base import DEFAULT_LIST_LIMIT, StorageBackend

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS auth_nonces (
    seq BIGSERIAL PRIMARY KEY,
    nonce TEXT NOT NULL UNIQUE,
    address TEXT NOT NULL,
    issued_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    consumed BOOLEAN NOT NULL DEFAULT FALSE
);
CREATE INDEX IF NOT EXISTS idx_auth_nonces_address ON auth_nonces(address);

CREATE TABLE IF NOT EXISTS receipts (
    seq BIGSERIAL PRIMARY KEY,
    id TEXT NOT NULL UNIQUE,
    purchase_commitment TEXT NOT NULL UNIQUE,
    buyer_address_hash TEXT NOT NULL,
    merchant_address_hash TEXT NOT NULL,
    total BIGINT NOT NULL,
    token_type SMALLINT NOT NULL DEFAULT 0,
    cart_commitment TEXT NOT NULL DEFAULT '',
    tx_id TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    purchase_type TEXT,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_receipts_buyer ON receipts(buyer_address_hash, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_receipts_merchant ON receipts(merchant_address_hash, created_at DESC);

CREATE TABLE IF NOT EXISTS escrows (
    seq BIGSERIAL PRIMARY KEY,
    id TEXT NOT NULL UNIQUE,
    purchase_commitment TEXT NOT NULL UNIQUE,
    buyer_address_hash TEXT NOT NULL,
    merchant_address_hash TEXT NOT NULL,
    total BIGINT NOT NULL,
    escrow_tx_id TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    resolve_tx_id TEXT,
    created_block BIGINT,
    created_at TIMESTAMPTZ NOT NULL,
    resolved_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_escrows_buyer ON escrows(buyer_address_hash, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_escrows_merchant ON escrows(merchant_address_hash, created_at DESC);

CREATE TABLE IF NOT EXISTS loyalty_claims (
    seq BIGSERIAL PRIMARY KEY,
    id TEXT NOT NULL UNIQUE,
    claim_key TEXT NOT NULL UNIQUE,
    address_hash TEXT NOT NULL,
    purchase_commitment TEXT,
    nullifier TEXT,
    score BIGINT NOT NULL,
    total_spent BIGINT NOT NULL,
    tx_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_loyalty_address ON loyalty_claims(address_hash, created_at DESC);

CREATE TABLE IF NOT EXISTS pending_transactions (
    seq BIGSERIAL PRIMARY KEY,
    tx_id TEXT NOT NULL UNIQUE,
    address_hash TEXT NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL,
    confirmed_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pending_status ON pending_transactions(status, created_at DESC);

CREATE TABLE IF NOT EXISTS merchants (
    seq BIGSERIAL PRIMARY KEY,
    address_hash TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);
"""

RECEIPT_COLUMNS = (
    "id, purchase_commitment, buyer_address_hash, merchant_address_hash, total, "
    "token_type, cart_commitment, tx_id, status, purchase_type, created_at, updated_at"
)
ESCROW_COLUMNS = (
    "id, purchase_commitment, buyer_address_hash, merchant_address_hash, total, "
    "escrow_tx_id, status, resolve_tx_id, created_block, created_at, resolved_at"
)
LOYALTY_COLUMNS = (
    "id, address_hash, purchase_commitment, nullifier, score, total_spent, tx_id, created_at"
)
PENDING_COLUMNS = (
    "tx_id, address_hash, kind, status, metadata, created_at, confirmed_at, updated_at"
)


def _normalize_dsn(dsn: str) -> str:
    if dsn.startswith("postgres://"):
        return dsn.replace("postgres://", "postgresql://", 1)
    return dsn


def _row_to_pending(row) -> PendingTransaction:
    data = dict(row)
    metadata = data.get("metadata")
    if isinstance(metadata, str):
        data["metadata"] = json.loads(metadata)
    return PendingTransaction.from_dict(data)


class PostgresStore(StorageBackend):
    """Relational backend built on an asyncpg pool."""

    name = "postgres"

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self._dsn = _normalize_dsn(dsn)
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self) -> None:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self._dsn,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    command_timeout=60,
                )
            except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
                raise StorageUnavailableError(f"Cannot connect to PostgreSQL: {exc}") from exc
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
            await self.close()
            raise StorageUnavailableError(f"Cannot create ledger schema: {exc}") from exc
        logger.info("PostgreSQL ledger store ready")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError):
            logger.warning("PostgreSQL ping failed", exc_info=True)
            return False

    def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise StorageUnavailableError("PostgreSQL pool unavailable")
        return self._pool

    async def _insert_then_fetch(
        self,
        insert_sql: str,
        insert_args: tuple[Any, ...],
        select_sql: str,
        key: str,
    ) -> tuple[bool, Any]:
        """Insert-if-absent and read back whichever row holds the key."""
        pool = self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(insert_sql, *insert_args)
                row = await conn.fetchrow(select_sql, key)
        # asyncpg returns "INSERT 0 <n>"
        created = status.endswith(" 1")
        if row is None:
            raise StorageUnavailableError("row vanished after upsert")
        return created, row

    # -- auth nonces -------------------------------------------------------

    async def replace_nonce(self, nonce: AuthNonce) -> AuthNonce:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                # Serializes concurrent issues for one address until commit.
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", nonce.address)
                await conn.execute("DELETE FROM auth_nonces WHERE address = $1", nonce.address)
                await conn.execute(
                    """
                    INSERT INTO auth_nonces (nonce, address, issued_at, expires_at, consumed)
                    VALUES ($1, $2, $3, $4, FALSE)
                    """,
                    nonce.nonce,
                    nonce.address,
                    nonce.issued_at,
                    nonce.expires_at,
                )
        return nonce

    async def consume_nonce(self, nonce: str) -> Optional[AuthNonce]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE auth_nonces SET consumed = TRUE
                WHERE nonce = $1 AND consumed = FALSE
                RETURNING nonce, address, issued_at, expires_at, consumed
                """,
                nonce,
            )
        return AuthNonce.from_dict(dict(row)) if row else None

    async def purge_expired_nonces(self, now: datetime) -> int:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM auth_nonces WHERE consumed = TRUE OR expires_at <= $1",
                now,
            )
        # Parse "DELETE N" to get count
        return int(result.split()[-1]) if result else 0

    # -- receipts ----------------------------------------------------------

    async def upsert_receipt(self, record: ReceiptRecord) -> UpsertResult[ReceiptRecord]:
        created, row = await self._insert_then_fetch(
            f"""
            INSERT INTO receipts ({RECEIPT_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            ON CONFLICT (purchase_commitment) DO NOTHING
            """,
            (
                record.id,
                record.purchase_commitment,
                record.buyer_address_hash,
                record.merchant_address_hash,
                record.total,
                record.token_type,
                record.cart_commitment,
                record.tx_id,
                record.status,
                record.purchase_type,
                record.created_at,
                record.updated_at,
            ),
            f"SELECT {RECEIPT_COLUMNS} FROM receipts WHERE purchase_commitment = $1",
            record.purchase_commitment,
        )
        return UpsertResult(created=created, record=ReceiptRecord.from_dict(dict(row)))

    async def get_receipt(self, purchase_commitment: str) -> Optional[ReceiptRecord]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {RECEIPT_COLUMNS} FROM receipts WHERE purchase_commitment = $1",
                purchase_commitment,
            )
        return ReceiptRecord.from_dict(dict(row)) if row else None

    async def list_receipts(
        self,
        identity_hash: str,
        role: Role,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[ReceiptRecord]:
        # LIMIT NULL is no limit.
        column = "merchant_address_hash" if role == Role.MERCHANT else "buyer_address_hash"
        pool = self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {RECEIPT_COLUMNS} FROM receipts
                WHERE {column} = $1
                ORDER BY created_at DESC, seq DESC
                LIMIT $2
                """,
                identity_hash,
                limit,
            )
        return [ReceiptRecord.from_dict(dict(r)) for r in rows]

    # -- escrow ------------------------------------------------------------

    async def upsert_escrow(self, record: EscrowRecord) -> UpsertResult[EscrowRecord]:
        created, row = await self._insert_then_fetch(
            f"""
            INSERT INTO escrows ({ESCROW_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            ON CONFLICT (purchase_commitment) DO NOTHING
            """,
            (
                record.id,
                record.purchase_commitment,
                record.buyer_address_hash,
                record.merchant_address_hash,
                record.total,
                record.escrow_tx_id,
                record.status,
                record.resolve_tx_id,
                record.created_block,
                record.created_at,
                record.resolved_at,
            ),
            f"SELECT {ESCROW_COLUMNS} FROM escrows WHERE purchase_commitment = $1",
            record.purchase_commitment,
        )
        return UpsertResult(created=created, record=EscrowRecord.from_dict(dict(row)))

    async def get_escrow(self, purchase_commitment: str) -> Optional[EscrowRecord]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {ESCROW_COLUMNS} FROM escrows WHERE purchase_commitment = $1",
                purchase_commitment,
            )
        return EscrowRecord.from_dict(dict(row)) if row else None

    async def list_escrows(
        self,
        identity_hash: str,
        role: Role,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[EscrowRecord]:
        column = "merchant_address_hash" if role == Role.MERCHANT else "buyer_address_hash"
        pool = self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {ESCROW_COLUMNS} FROM escrows
                WHERE {column} = $1
                ORDER BY created_at DESC, seq DESC
                LIMIT $2
                """,
                identity_hash,
                limit,
            )
        return [EscrowRecord.from_dict(dict(r)) for r in rows]

    async def transition_escrow(
        self,
        purchase_commitment: str,
        from_status: str,
        to_status: str,
        resolve_tx_id: Optional[str],
        receipt_status: Optional[str] = None,
    ) -> Optional[TransitionResult[EscrowRecord]]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE escrows
                    SET status = $3, resolve_tx_id = $4, resolved_at = NOW()
                    WHERE purchase_commitment = $1 AND status = $2
                    RETURNING {ESCROW_COLUMNS}
                    """,
                    purchase_commitment,
                    from_status,
                    to_status,
                    resolve_tx_id,
                )
                if row is None:
                    current = await conn.fetchrow(
                        f"SELECT {ESCROW_COLUMNS} FROM escrows WHERE purchase_commitment = $1",
                        purchase_commitment,
                    )
                    if current is None:
                        return None
                    return TransitionResult(
                        changed=False, record=EscrowRecord.from_dict(dict(current))
                    )
                if receipt_status:
                    await conn.execute(
                        """
                        UPDATE receipts SET status = $2, updated_at = NOW()
                        WHERE purchase_commitment = $1 AND status = $3
                        """,
                        purchase_commitment,
                        receipt_status,
                        ReceiptStatus.ESCROWED.value,
                    )
        return TransitionResult(changed=True, record=EscrowRecord.from_dict(dict(row)))

    # -- loyalty -----------------------------------------------------------

    async def append_loyalty(self, record: LoyaltyRecord) -> UpsertResult[LoyaltyRecord]:
        created, row = await self._insert_then_fetch(
            f"""
            INSERT INTO loyalty_claims (claim_key, {LOYALTY_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (claim_key) DO NOTHING
            """,
            (
                record.claim_key,
                record.id,
                record.address_hash,
                record.purchase_commitment,
                record.nullifier,
                record.score,
                record.total_spent,
                record.tx_id,
                record.created_at,
            ),
            f"SELECT {LOYALTY_COLUMNS} FROM loyalty_claims WHERE claim_key = $1",
            record.claim_key,
        )
        return UpsertResult(created=created, record=LoyaltyRecord.from_dict(dict(row)))

    async def list_loyalty(
        self,
        address_hash: str,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[LoyaltyRecord]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {LOYALTY_COLUMNS} FROM loyalty_claims
                WHERE address_hash = $1
                ORDER BY created_at DESC, seq DESC
                LIMIT $2
                """,
                address_hash,
                limit,
            )
        return [LoyaltyRecord.from_dict(dict(r)) for r in rows]

    # -- pending transactions ---------------------------------------------

    async def upsert_pending_tx(
        self, record: PendingTransaction
    ) -> UpsertResult[PendingTransaction]:
        created, row = await self._insert_then_fetch(
            f"""
            INSERT INTO pending_transactions ({PENDING_COLUMNS})
            VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8)
            ON CONFLICT (tx_id) DO NOTHING
            """,
            (
                record.tx_id,
                record.address_hash,
                record.kind,
                record.status,
                json.dumps(record.metadata),
                record.created_at,
                record.confirmed_at,
                record.updated_at,
            ),
            f"SELECT {PENDING_COLUMNS} FROM pending_transactions WHERE tx_id = $1",
            record.tx_id,
        )
        return UpsertResult(created=created, record=_row_to_pending(row))

    async def get_pending_tx(self, tx_id: str) -> Optional[PendingTransaction]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {PENDING_COLUMNS} FROM pending_transactions WHERE tx_id = $1",
                tx_id,
            )
        return _row_to_pending(row) if row else None

    async def list_pending_txs(
        self,
        status: Optional[str] = None,
        address_hash: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> list[PendingTransaction]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {PENDING_COLUMNS} FROM pending_transactions
                WHERE ($1::text IS NULL OR status = $1)
                  AND ($2::text IS NULL OR address_hash = $2)
                ORDER BY created_at DESC, seq DESC
                LIMIT $3
                """,
                status,
                address_hash,
                limit,
            )
        return [_row_to_pending(r) for r in rows]

    async def settle_pending_tx(
        self,
        tx_id: str,
        status: str,
        at: datetime,
    ) -> Optional[PendingTransaction]:
        confirmed_at = at if status == PendingStatus.CONFIRMED.value else None
        pool = self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE pending_transactions
                SET status = $2, confirmed_at = $3, updated_at = $4
                WHERE tx_id = $1 AND status = $5
                RETURNING {PENDING_COLUMNS}
                """,
                tx_id,
                status,
                confirmed_at,
                at,
                PendingStatus.PENDING.value,
            )
        return _row_to_pending(row) if row else None

    # -- merchants ---------------------------------------------------------

    async def upsert_merchant(self, profile: MerchantProfile) -> UpsertResult[MerchantProfile]:
        created, row = await self._insert_then_fetch(
            """
            INSERT INTO merchants (address_hash, name, category, created_at)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (address_hash) DO NOTHING
            """,
            (profile.address_hash, profile.name, profile.category, profile.created_at),
            "SELECT address_hash, name, category, created_at FROM merchants WHERE address_hash = $1",
            profile.address_hash,
        )
        return UpsertResult(created=created, record=MerchantProfile.from_dict(dict(row)))

    async def get_merchant(self, address_hash: str) -> Optional[MerchantProfile]:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT address_hash, name, category, created_at FROM merchants WHERE address_hash = $1",
                address_hash,
            )
        return MerchantProfile.from_dict(dict(row)) if row else None


__all__ = ["PostgresStore", "SCHEMA_SQL"]
