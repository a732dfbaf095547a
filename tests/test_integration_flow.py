"""End-to-end lifecycle tests through the HTTP API."""

from httpx import AsyncClient

from app.services.notification_service import DomainEventType
from conftest import ALICE, BOB, FakeChain


class TestDomainLifecycle:
    async def test_submit_then_confirm_registration(
        self, client: AsyncClient, fake_chain: FakeChain, events
    ):
        """Wallet submits, transaction confirms, reconcile activates the name."""
        fake_chain.add("0xabc", status="pending")

        submitted = await client.post("/api/transactions/0xabc/process")
        assert submitted.json()["status"] == "pending"
        assert (await client.get("/api/domains/resolve/alice")).status_code == 404

        fake_chain.confirm("0xabc")
        reconciled = await client.post("/api/domains/alice/reconcile")

        assert reconciled.json()["status"] == "active"
        resolved = await client.get("/api/domains/resolve/alice")
        assert resolved.json()["address"] == ALICE
        assert [e.type for e in events] == [DomainEventType.PENDING, DomainEventType.ACTIVATED]

    async def test_second_claimant_rejected(self, client: AsyncClient, fake_chain: FakeChain):
        fake_chain.add("0xabc")
        await client.post("/api/transactions/0xabc/process")
        fake_chain.add("0x222", sender=BOB)

        response = await client.post("/api/registrations", json={
            "domain": "alice", "address": BOB, "tx_hash": "0x222",
        })

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DOMAIN_TAKEN"
        resolved = await client.get("/api/domains/resolve/alice")
        assert resolved.json()["address"] == ALICE
        assert resolved.json()["tx_hash"] == "0xabc"

    async def test_delete_then_resolve_not_found(
        self, client: AsyncClient, fake_chain: FakeChain, events
    ):
        fake_chain.add("0xabc")
        await client.post("/api/transactions/0xabc/process")

        deletion = await client.post("/api/domains/alice/deletion", json={
            "tx_hash": "0xdef", "address": ALICE,
        })
        assert deletion.status_code == 202
        assert deletion.json()["status"] == "deleting"

        fake_chain.add("0xdef", message="delete_domain:alice.oct", amount="0.1")
        deleted = await client.post("/api/transactions/0xdef/process")

        assert deleted.json()["status"] == "deleted"
        assert (await client.get("/api/domains/resolve/alice")).status_code == 404
        assert (await client.get("/api/domains/alice/availability")).json()["available"] is True
        assert [e.type for e in events] == [
            DomainEventType.ACTIVATED,
            DomainEventType.DELETING,
            DomainEventType.DELETED,
        ]

    async def test_underpaid_confirmed_stays_pending(
        self, client: AsyncClient, fake_chain: FakeChain
    ):
        await client.post("/api/registrations/pending", json={
            "domain": "alice", "address": ALICE, "tx_hash": "0xabc",
        })
        fake_chain.add("0xabc", amount="0.1")

        for _ in range(3):
            response = await client.post("/api/domains/alice/reconcile")
            assert response.json()["status"] == "pending"

        fake_chain.add("0xgood")
        promoted = await client.post("/api/registrations", json={
            "domain": "alice", "address": ALICE, "tx_hash": "0xgood",
        })

        assert promoted.status_code == 201
        assert promoted.json()["status"] == "active"
        assert promoted.json()["tx_hash"] == "0xgood"

    async def test_stats_follow_lifecycle(self, client: AsyncClient, fake_chain: FakeChain):
        fake_chain.add("0xabc")
        fake_chain.add("0x222", sender=BOB, message="register_domain:bob.oct")
        await client.post("/api/transactions/0xabc/process")
        await client.post("/api/transactions/0x222/process")

        before = (await client.get("/api/stats")).json()

        await client.post("/api/domains/alice/deletion", json={"tx_hash": "0xdef"})
        fake_chain.add("0xdef", message="delete_domain:alice.oct", amount="0.1")
        await client.post("/api/domains/alice/reconcile")

        after = (await client.get("/api/stats")).json()

        assert before["total_domains"] == 2
        assert before["total_users"] == 2
        assert after["total_domains"] == 1
        assert after["total_users"] == 1
