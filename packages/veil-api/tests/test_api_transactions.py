"""Tests for pending transaction tracking and confirmation."""
from __future__ import annotations

BUYER = "aleo1" + "q" * 58
OTHER = "aleo1" + "z" * 58


async def register(client, headers, tx_id="at1pending", kind="purchase"):
    return await client.post(
        "/tx", json={"tx_id": tx_id, "kind": kind, "metadata": {"total": 5}}, headers=headers
    )


class TestRegister:
    async def test_register_is_idempotent(self, client, login):
        headers = await login(BUYER)
        first = await register(client, headers)
        again = await register(client, headers)
        assert first.status_code == 201
        assert again.status_code == 200
        assert first.json()["status"] == "pending"
        assert again.json()["metadata"] == {"total": 5}

    async def test_tx_owned_by_other_identity(self, client, login):
        await register(client, await login(BUYER))
        response = await register(client, await login(OTHER))
        assert response.status_code == 409

    async def test_requires_credential(self, client):
        response = await client.post("/tx", json={"tx_id": "at1", "kind": "purchase"})
        assert response.status_code == 401

    async def test_pending_list_is_scoped(self, client, login):
        buyer = await login(BUYER)
        other = await login(OTHER)
        await register(client, buyer, "at1a")
        await register(client, other, "at1b")

        mine = await client.get("/tx/pending", headers=buyer)
        assert [t["tx_id"] for t in mine.json()] == ["at1a"]
        filtered = await client.get("/tx/pending?status=confirmed", headers=buyer)
        assert filtered.json() == []


class TestConfirmation:
    async def test_status_reflects_inclusion(self, client, login, chain):
        await register(client, await login(BUYER))

        before = (await client.get("/tx/at1pending/status")).json()
        assert before["confirmed"] is False
        assert before["local_status"] == "pending"
        assert before["block_height"] == 1000

        chain.include("at1pending")
        after = (await client.get("/tx/at1pending/status")).json()
        assert after["confirmed"] is True
        assert after["local_status"] == "confirmed"

    async def test_status_during_outage(self, client, chain):
        chain.set_available(False)
        response = await client.get("/tx/at1x/status")
        assert response.status_code == 503
        assert response.json()["error"] == "UPSTREAM_UNAVAILABLE"

    async def test_confirm_times_out(self, client, login):
        await register(client, await login(BUYER))
        response = await client.post(
            "/tx/at1pending/confirm", json={"timeout_ms": 30, "interval_ms": 10}
        )
        assert response.status_code == 200
        assert response.json() == {"tx_id": "at1pending", "confirmed": False, "local_status": "pending"}

    async def test_confirm_included_transaction(self, client, login, chain):
        await register(client, await login(BUYER))
        chain.include("at1pending")
        response = await client.post("/tx/at1pending/confirm")
        assert response.json()["confirmed"] is True
        assert response.json()["local_status"] == "confirmed"

    async def test_reconcile(self, client, login, chain):
        headers = await login(BUYER)
        await register(client, headers, "at1a")
        await register(client, headers, "at1b")
        chain.include("at1a")

        response = await client.post("/tx/reconcile", headers=headers)
        assert response.status_code == 200
        assert response.json() == {"checked": 2, "confirmed": 1, "failed": 0, "pending": 1}


class TestServiceRoutes:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"]["storage"] == "file"
        assert body["chain_mode"] == "simulated"

    async def test_root(self, client):
        body = (await client.get("/")).json()
        assert body["endpoints"]["receipts"] == "/receipts"

    async def test_chain_height(self, client, chain):
        chain.advance(5)
        assert (await client.get("/chain/height")).json() == {"height": 1005}
