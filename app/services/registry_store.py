"""
Registry store - persistent domain records behind a small CRUD interface.

The database is the final arbiter of uniqueness: a partial unique index
allows one live record per name, and transaction hashes are unique. Status
changes are compare-and-set updates (``WHERE status = <expected>``) so a
writer in another process cannot interleave with a read-verify-write done
here.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import utcnow
from app.models.domain_record import (
    LIVE_STATUSES,
    DomainRecord,
    DomainStatus,
)

logger = logging.getLogger(__name__)

_LIVE_VALUES = [status.value for status in LIVE_STATUSES]


class RegistryStoreError(Exception):
    """Underlying persistence failure; safe to retry with the same request."""

    pass


class RegistryConflict(Exception):
    """A uniqueness constraint rejected the write."""

    pass


class DomainTaken(RegistryConflict):
    """A live record already holds the name."""

    pass


class TransactionAlreadyUsed(RegistryConflict):
    """The transaction hash already justifies another record."""

    pass


@dataclass(frozen=True)
class RegistryStats:
    """Aggregate counts over active records."""

    total_domains: int
    total_users: int
    recent_registrations: int


class RegistryStore(Protocol):
    """Port interface for domain record persistence."""

    async def create_record(
        self, domain: str, owner_address: str, tx_hash: str, status: DomainStatus
    ) -> DomainRecord: ...

    async def get_record(self, record_id: UUID) -> DomainRecord | None: ...

    async def get_live_record(self, domain: str) -> DomainRecord | None: ...

    async def get_latest_record(self, domain: str) -> DomainRecord | None: ...

    async def get_by_tx_hash(self, tx_hash: str) -> DomainRecord | None: ...

    async def transition(
        self,
        record_id: UUID,
        expected: DomainStatus,
        new_status: DomainStatus,
        **changes: Any,
    ) -> DomainRecord | None: ...

    async def touch(self, record_id: UUID) -> DomainRecord | None: ...

    async def list_by_address(self, address: str) -> list[DomainRecord]: ...

    async def resolve(self, domain: str) -> DomainRecord | None: ...

    async def recent_active(self, limit: int) -> list[DomainRecord]: ...

    async def get_stats(self) -> RegistryStats: ...


class SqlRegistryStore:
    """
    Implements RegistryStore with SQLAlchemy async sessions.

    Each operation runs in its own transaction, so returned records are
    detached snapshots.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session, commit on success, wrap driver errors as RegistryStoreError."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Registry store failure: {e}")
                raise RegistryStoreError(str(e)) from e

    async def _classify_conflict(
        self,
        domain: str,
        tx_hashes: list[str],
        record_id: UUID | None = None,
    ) -> RegistryConflict:
        """Work out which constraint an IntegrityError came from, ignoring ``record_id`` itself."""
        live = await self.get_live_record(domain)
        if live is not None and live.id != record_id:
            return DomainTaken(domain)
        for tx_hash in tx_hashes:
            holder = await self.get_by_tx_hash(tx_hash)
            if holder is not None and holder.id != record_id:
                return TransactionAlreadyUsed(tx_hash)
        return DomainTaken(domain)

    async def create_record(
        self,
        domain: str,
        owner_address: str,
        tx_hash: str,
        status: DomainStatus,
    ) -> DomainRecord:
        """
        Insert a new record.

        Args:
            domain: Normalized name
            owner_address: Claiming address
            tx_hash: Registration transaction hash
            status: Initial status (pending or active)

        Returns:
            Created record

        Raises:
            DomainTaken: If a live record already holds the name
            TransactionAlreadyUsed: If the hash justifies another record
        """
        now = utcnow()
        record = DomainRecord(
            id=uuid4(),
            domain=domain,
            owner_address=owner_address,
            tx_hash=tx_hash,
            status=status.value,
            created_at=now,
            last_verified_at=now,
            updated_at=now,
        )

        try:
            async with self._transaction() as session:
                session.add(record)
                await session.flush()
        except IntegrityError:
            conflict = await self._classify_conflict(domain, [tx_hash])
            logger.info(f"Insert for {domain} rejected: {type(conflict).__name__}")
            raise conflict

        logger.info(f"Created record for {domain} with status {status.value}")
        return record

    async def get_record(self, record_id: UUID) -> DomainRecord | None:
        async with self._transaction() as session:
            return await session.get(DomainRecord, record_id)

    async def get_live_record(self, domain: str) -> DomainRecord | None:
        """Return the non-terminal record holding a name, if any."""
        async with self._transaction() as session:
            result = await session.execute(
                select(DomainRecord).where(
                    DomainRecord.domain == domain,
                    DomainRecord.status.in_(_LIVE_VALUES),
                )
            )
            return result.scalar_one_or_none()

    async def get_latest_record(self, domain: str) -> DomainRecord | None:
        """Return the most recent record for a name in any status."""
        async with self._transaction() as session:
            result = await session.execute(
                select(DomainRecord)
                .where(DomainRecord.domain == domain)
                .order_by(DomainRecord.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_by_tx_hash(self, tx_hash: str) -> DomainRecord | None:
        """Find the record justified by a registration or deletion hash."""
        async with self._transaction() as session:
            result = await session.execute(
                select(DomainRecord).where(
                    (DomainRecord.tx_hash == tx_hash)
                    | (DomainRecord.deletion_tx_hash == tx_hash)
                )
            )
            return result.scalars().first()

    async def transition(
        self,
        record_id: UUID,
        expected: DomainStatus,
        new_status: DomainStatus,
        **changes: Any,
    ) -> DomainRecord | None:
        """
        Atomically move a record from one status to another.

        Args:
            record_id: Record to update
            expected: Status the record must currently have
            new_status: Status to set
            **changes: Additional column values to write

        Returns:
            Updated record, or None if the record was no longer in ``expected``

        Raises:
            DomainTaken / TransactionAlreadyUsed: If the update breaks a constraint
        """
        now = utcnow()
        values = {"status": new_status.value, "updated_at": now, **changes}
        values.setdefault("last_verified_at", now)

        stmt = (
            update(DomainRecord)
            .where(DomainRecord.id == record_id, DomainRecord.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._transaction() as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    logger.info(
                        f"Transition {expected.value} -> {new_status.value} skipped for "
                        f"{record_id}: status changed concurrently"
                    )
                    return None
                record = await session.get(DomainRecord, record_id, populate_existing=True)
        except IntegrityError:
            current = await self.get_record(record_id)
            hashes = [v for k, v in changes.items() if k.endswith("tx_hash") and v]
            raise await self._classify_conflict(
                current.domain if current else "", hashes, record_id
            )

        logger.info(f"Record {record.domain}: {expected.value} -> {new_status.value}")
        return record

    async def touch(self, record_id: UUID) -> DomainRecord | None:
        """Stamp last_verified_at without changing status."""
        async with self._transaction() as session:
            record = await session.get(DomainRecord, record_id)
            if record is None:
                return None
            record.last_verified_at = utcnow()
            await session.flush()
            return record

    async def list_by_address(self, address: str) -> list[DomainRecord]:
        """All records owned by an address, newest first."""
        async with self._transaction() as session:
            result = await session.execute(
                select(DomainRecord)
                .where(DomainRecord.owner_address == address)
                .order_by(DomainRecord.created_at.desc())
            )
            return list(result.scalars().all())

    async def resolve(self, domain: str) -> DomainRecord | None:
        """Return the active record for a name; other statuses do not resolve."""
        async with self._transaction() as session:
            result = await session.execute(
                select(DomainRecord).where(
                    DomainRecord.domain == domain,
                    DomainRecord.status == DomainStatus.ACTIVE.value,
                )
            )
            return result.scalar_one_or_none()

    async def recent_active(self, limit: int) -> list[DomainRecord]:
        """Most recent active registrations."""
        async with self._transaction() as session:
            result = await session.execute(
                select(DomainRecord)
                .where(DomainRecord.status == DomainStatus.ACTIVE.value)
                .order_by(DomainRecord.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_stats(self) -> RegistryStats:
        """Active domains, distinct owners, and active registrations in the last 24 hours."""
        since = utcnow() - timedelta(hours=24)
        active = DomainRecord.status == DomainStatus.ACTIVE.value

        async with self._transaction() as session:
            total_domains = await session.scalar(
                select(func.count()).select_from(DomainRecord).where(active)
            ) or 0
            total_users = await session.scalar(
                select(func.count(func.distinct(DomainRecord.owner_address))).where(active)
            ) or 0
            recent = await session.scalar(
                select(func.count()).select_from(DomainRecord).where(
                    active,
                    DomainRecord.created_at >= since,
                )
            ) or 0

        return RegistryStats(
            total_domains=total_domains,
            total_users=total_users,
            recent_registrations=recent,
        )
