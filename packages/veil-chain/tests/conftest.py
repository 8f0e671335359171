"""
Pytest configuration for veil-chain tests.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add package sources to path
packages_dir = Path(__file__).parent.parent.parent
for name in ("veil-core", "veil-chain"):
    src = packages_dir / name / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

from veil_core.identity import hash_address
from veil_core.storage import JsonFileStore


class VirtualTime:
    """Monotonic clock plus a sleep that advances it instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def vtime() -> VirtualTime:
    return VirtualTime()


@pytest.fixture
async def store(tmp_path):
    backend = JsonFileStore(tmp_path / "chain.json")
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
def buyer_hash() -> str:
    return hash_address("aleo1" + "q" * 58)
