"""
Pytest configuration for veil-core tests.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
if str(package_src) not in sys.path:
    sys.path.insert(0, str(package_src))

from veil_core.identity import hash_address
from veil_core.storage import JsonFileStore, PostgresStore

BUYER_ADDRESS = "aleo1" + "q" * 58
MERCHANT_ADDRESS = "aleo1" + "p" * 58
OTHER_ADDRESS = "aleo1" + "z" * 58

POSTGRES_TABLES = (
    "auth_nonces",
    "receipts",
    "escrows",
    "loyalty_claims",
    "pending_transactions",
    "merchants",
)


@pytest.fixture
def buyer_hash() -> str:
    return hash_address(BUYER_ADDRESS)


@pytest.fixture
def merchant_hash() -> str:
    return hash_address(MERCHANT_ADDRESS)


@pytest.fixture
def other_hash() -> str:
    return hash_address(OTHER_ADDRESS)


@pytest.fixture(params=["file", "postgres"])
async def store(request, tmp_path):
    """Every storage backend, initialized and empty."""
    if request.param == "file":
        backend = JsonFileStore(tmp_path / "ledger.json")
        await backend.initialize()
    else:
        dsn = os.getenv("VEIL_TEST_DATABASE_URL")
        if not dsn:
            pytest.skip("VEIL_TEST_DATABASE_URL not set")
        backend = PostgresStore(dsn)
        await backend.initialize()
        async with backend._get_pool().acquire() as conn:
            await conn.execute(f"TRUNCATE {', '.join(POSTGRES_TABLES)} RESTART IDENTITY")
    yield backend
    await backend.close()
