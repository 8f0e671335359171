"""Tests for receipt registration and listing."""
from __future__ import annotations

from veil_core.identity import hash_address

BUYER = "aleo1" + "q" * 58
MERCHANT = "aleo1" + "p" * 58


def receipt_body(commitment="commit_1", total=5_000_000, **extra):
    body = {
        "purchase_commitment": commitment,
        "buyer_address_hash": hash_address(BUYER),
        "merchant_address_hash": hash_address(MERCHANT),
        "total": total,
        "tx_id": "at1purchase",
    }
    body.update(extra)
    return body


class TestCreateReceipt:
    async def test_duplicate_returns_existing(self, client, login):
        first = await client.post("/receipts", json=receipt_body())
        second = await client.post("/receipts", json=receipt_body())

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

        headers = await login(MERCHANT, "merchant")
        listed = await client.get("/receipts", headers=headers)
        assert listed.status_code == 200
        assert len(listed.json()) == 1

    async def test_same_commitment_different_sale(self, client):
        await client.post("/receipts", json=receipt_body(total=1))
        response = await client.post("/receipts", json=receipt_body(total=2))
        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"

    async def test_storefront_payload(self, client):
        response = await client.post(
            "/receipts",
            json={
                "txId": "at1store",
                "buyerAddress": BUYER,
                "merchantAddress": MERCHANT,
                "cartCommitment": "cart_42",
                "total": 2_500_000,
                "tokenType": "usdcx",
                "purchaseType": "private",
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["purchase_commitment"] == "cart_42"
        assert body["buyer_address_hash"] == hash_address(BUYER)
        assert body["token_type"] == 1
        assert body["purchase_type"] == "private"
        assert BUYER not in response.text
        assert MERCHANT not in response.text

    async def test_storefront_payload_rejects_bad_address(self, client):
        response = await client.post(
            "/receipts",
            json={"cartCommitment": "c", "buyerAddress": "nope", "merchantAddress": MERCHANT, "total": 1},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    async def test_negative_total(self, client):
        response = await client.post("/receipts", json=receipt_body(total=-5))
        assert response.status_code == 422


class TestReadReceipts:
    async def test_get_by_commitment(self, client):
        await client.post("/receipts", json=receipt_body("commit_x"))
        response = await client.get("/receipts/commit_x")
        assert response.status_code == 200
        assert response.json()["total"] == 5_000_000

    async def test_unknown_commitment(self, client):
        response = await client.get("/receipts/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    async def test_list_requires_credential(self, client):
        assert (await client.get("/receipts")).status_code == 401

    async def test_list_by_buyer_role(self, client, login):
        await client.post("/receipts", json=receipt_body("c1"))
        await client.post("/receipts", json=receipt_body("c2"))

        headers = await login(BUYER)
        as_buyer = await client.get("/receipts", headers=headers)
        assert {r["purchase_commitment"] for r in as_buyer.json()} == {"c1", "c2"}

        as_merchant = await client.get("/receipts?role=merchant", headers=headers)
        assert as_merchant.json() == []
