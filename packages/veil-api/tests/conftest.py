"""
Pytest configuration for veil-api tests.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add package sources to path
packages_dir = Path(__file__).parent.parent.parent
for name in ("veil-core", "veil-protocol", "veil-ledger", "veil-chain", "veil-api"):
    src = packages_dir / name / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

from httpx import ASGITransport, AsyncClient

from veil_api.main import create_app
from veil_chain import SimulatedLedger
from veil_core import VeilSettings

TEST_SECRET = "test-secret-key-for-api-tests-0123456789"
TEST_SIGNATURE = "sign1" + "a" * 70


@pytest.fixture
def settings(tmp_path) -> VeilSettings:
    return VeilSettings(
        _env_file=None,
        data_file=str(tmp_path / "veil.json"),
        secret_key=TEST_SECRET,
        confirm_timeout_seconds=0.05,
        confirm_interval_seconds=0.01,
        confirm_max_timeout_seconds=0.2,
    )


@pytest.fixture
def chain() -> SimulatedLedger:
    return SimulatedLedger(start_height=1000)


@pytest.fixture
async def app(settings, chain):
    application = create_app(settings, external_ledger=chain, configure_logging=False)
    # ASGITransport does not drive lifespan events
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def login(client):
    """Run the nonce/verify handshake and return Authorization headers."""

    async def _login(address: str, role: str = "buyer") -> dict[str, str]:
        response = await client.post("/auth/nonce", json={"address": address})
        assert response.status_code == 200, response.text
        nonce = response.json()["nonce"]
        response = await client.post(
            "/auth/verify",
            json={"nonce": nonce, "address": address, "signature": TEST_SIGNATURE, "role": role},
        )
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _login
