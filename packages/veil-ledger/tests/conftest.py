"""
Pytest configuration for veil-ledger tests.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add package sources to path
packages_dir = Path(__file__).parent.parent.parent
for name in ("veil-core", "veil-ledger"):
    src = packages_dir / name / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

from veil_core.identity import hash_address
from veil_core.storage import JsonFileStore
from veil_ledger import EventLedger, ProjectionService


@pytest.fixture
async def store(tmp_path):
    backend = JsonFileStore(tmp_path / "ledger.json")
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
def ledger(store) -> EventLedger:
    return EventLedger(store)


@pytest.fixture
def projections(store) -> ProjectionService:
    return ProjectionService(store)


@pytest.fixture
def buyer_hash() -> str:
    return hash_address("aleo1" + "q" * 58)


@pytest.fixture
def merchant_hash() -> str:
    return hash_address("aleo1" + "p" * 58)


@pytest.fixture
def other_hash() -> str:
    return hash_address("aleo1" + "z" * 58)
