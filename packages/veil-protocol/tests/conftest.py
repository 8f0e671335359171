"""
Pytest configuration for veil-protocol tests.
"""
from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add package sources to path
packages_dir = Path(__file__).parent.parent.parent
for name in ("veil-core", "veil-protocol"):
    src = packages_dir / name / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

from veil_core.storage import JsonFileStore


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
async def store(tmp_path):
    backend = JsonFileStore(tmp_path / "auth.json")
    await backend.initialize()
    yield backend
    await backend.close()
