"""Tests for the SQL registry store."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from app.database import utcnow
from app.models.domain_record import DomainRecord, DomainStatus
from app.services.registry_store import (
    DomainTaken,
    SqlRegistryStore,
    TransactionAlreadyUsed,
)
from conftest import ALICE, BOB


async def _create(
    store: SqlRegistryStore,
    domain: str = "alice",
    owner: str = ALICE,
    tx_hash: str | None = None,
    status: DomainStatus = DomainStatus.ACTIVE,
) -> DomainRecord:
    """Helper to create a test record."""
    return await store.create_record(domain, owner, tx_hash or f"0x{uuid4().hex}", status)


class TestCreateRecord:
    async def test_creates_record(self, store: SqlRegistryStore):
        record = await _create(store, tx_hash="0xabc", status=DomainStatus.PENDING)

        assert record.domain == "alice"
        assert record.owner_address == ALICE
        assert record.tx_hash == "0xabc"
        assert record.status == "pending"
        assert record.deletion_tx_hash is None
        assert record.created_at.tzinfo is not None

        stored = await store.get_record(record.id)
        assert stored.tx_hash == "0xabc"
        assert stored.created_at.tzinfo is not None

    async def test_second_live_record_rejected(self, store: SqlRegistryStore):
        await _create(store, status=DomainStatus.PENDING)

        with pytest.raises(DomainTaken):
            await _create(store, owner=BOB)

    async def test_duplicate_tx_hash_rejected(self, store: SqlRegistryStore):
        await _create(store, domain="alice", tx_hash="0xabc")

        with pytest.raises(TransactionAlreadyUsed):
            await _create(store, domain="carol", tx_hash="0xabc")

    async def test_terminal_record_frees_name(self, store: SqlRegistryStore):
        first = await _create(store)
        await store.transition(first.id, DomainStatus.ACTIVE, DomainStatus.DELETING,
                               deletion_tx_hash="0xdel")
        await store.transition(first.id, DomainStatus.DELETING, DomainStatus.DELETED)

        second = await _create(store, owner=BOB)
        assert second.owner_address == BOB
        assert (await store.get_live_record("alice")).id == second.id


class TestLookups:
    async def test_get_live_record_ignores_terminal(self, store: SqlRegistryStore):
        record = await _create(store, status=DomainStatus.PENDING)
        await store.transition(record.id, DomainStatus.PENDING, DomainStatus.REJECTED)

        assert await store.get_live_record("alice") is None
        latest = await store.get_latest_record("alice")
        assert latest.status == "rejected"

    async def test_get_by_tx_hash_matches_deletion_hash(self, store: SqlRegistryStore):
        record = await _create(store, tx_hash="0xreg")
        await store.transition(record.id, DomainStatus.ACTIVE, DomainStatus.DELETING,
                               deletion_tx_hash="0xdel")

        assert (await store.get_by_tx_hash("0xreg")).id == record.id
        assert (await store.get_by_tx_hash("0xdel")).id == record.id
        assert await store.get_by_tx_hash("0xother") is None

    async def test_get_record_missing(self, store: SqlRegistryStore):
        assert await store.get_record(uuid4()) is None

    async def test_list_by_address_newest_first(self, store: SqlRegistryStore, session_factory):
        older = await _create(store, domain="alice")
        newer = await _create(store, domain="carol")
        await _create(store, domain="dave", owner=BOB)

        async with session_factory() as session:
            await session.execute(
                update(DomainRecord)
                .where(DomainRecord.id == older.id)
                .values(created_at=utcnow() - timedelta(days=1))
            )
            await session.commit()

        records = await store.list_by_address(ALICE)
        assert [r.id for r in records] == [newer.id, older.id]


class TestResolve:
    async def test_only_active_resolves(self, store: SqlRegistryStore):
        await _create(store, domain="alice", status=DomainStatus.ACTIVE)
        await _create(store, domain="carol", status=DomainStatus.PENDING)

        assert (await store.resolve("alice")).owner_address == ALICE
        assert await store.resolve("carol") is None
        assert await store.resolve("nobody") is None

    async def test_deleting_does_not_resolve(self, store: SqlRegistryStore):
        record = await _create(store)
        await store.transition(record.id, DomainStatus.ACTIVE, DomainStatus.DELETING,
                               deletion_tx_hash="0xdel")
        assert await store.resolve("alice") is None


class TestTransition:
    async def test_compare_and_set(self, store: SqlRegistryStore):
        record = await _create(store, status=DomainStatus.PENDING)
        before = record.last_verified_at

        updated = await store.transition(record.id, DomainStatus.PENDING, DomainStatus.ACTIVE)

        assert updated.status == "active"
        assert updated.last_verified_at >= before

    async def test_wrong_expected_status_is_noop(self, store: SqlRegistryStore):
        record = await _create(store, status=DomainStatus.PENDING)

        result = await store.transition(record.id, DomainStatus.ACTIVE, DomainStatus.DELETING)

        assert result is None
        assert (await store.get_record(record.id)).status == "pending"

    async def test_duplicate_deletion_hash_conflicts(self, store: SqlRegistryStore):
        first = await _create(store, domain="alice")
        second = await _create(store, domain="carol")
        await store.transition(first.id, DomainStatus.ACTIVE, DomainStatus.DELETING,
                               deletion_tx_hash="0xdel")

        with pytest.raises(TransactionAlreadyUsed):
            await store.transition(second.id, DomainStatus.ACTIVE, DomainStatus.DELETING,
                                   deletion_tx_hash="0xdel")

    async def test_clearing_fields(self, store: SqlRegistryStore):
        record = await _create(store)
        await store.transition(record.id, DomainStatus.ACTIVE, DomainStatus.DELETING,
                               deletion_tx_hash="0xdel", deletion_requested_at=utcnow())

        reverted = await store.transition(
            record.id, DomainStatus.DELETING, DomainStatus.ACTIVE,
            deletion_tx_hash=None, deletion_requested_at=None,
        )

        assert reverted.status == "active"
        assert reverted.deletion_tx_hash is None
        assert reverted.deletion_requested_at is None


class TestTouch:
    async def test_updates_last_verified_only(self, store: SqlRegistryStore, session_factory):
        record = await _create(store, status=DomainStatus.PENDING)
        stale = utcnow() - timedelta(hours=1)
        async with session_factory() as session:
            await session.execute(
                update(DomainRecord)
                .where(DomainRecord.id == record.id)
                .values(last_verified_at=stale)
            )
            await session.commit()

        touched = await store.touch(record.id)

        assert touched.status == "pending"
        assert touched.last_verified_at > stale

    async def test_missing_record(self, store: SqlRegistryStore):
        assert await store.touch(uuid4()) is None


class TestStats:
    async def test_counts_active_only(self, store: SqlRegistryStore, session_factory):
        await _create(store, domain="alice", owner=ALICE)
        await _create(store, domain="carol", owner=ALICE)
        old = await _create(store, domain="dave", owner=BOB)
        await _create(store, domain="erin", owner=BOB, status=DomainStatus.PENDING)

        async with session_factory() as session:
            await session.execute(
                update(DomainRecord)
                .where(DomainRecord.id == old.id)
                .values(created_at=utcnow() - timedelta(days=2))
            )
            await session.commit()

        stats = await store.get_stats()

        assert stats.total_domains == 3
        assert stats.total_users == 2
        assert stats.recent_registrations == 2

    async def test_recent_active(self, store: SqlRegistryStore):
        for name in ("alice", "carol", "dave"):
            await _create(store, domain=name)
        await _create(store, domain="erin", status=DomainStatus.PENDING)

        recent = await store.recent_active(2)

        assert len(recent) == 2
        assert all(r.status == "active" for r in recent)
