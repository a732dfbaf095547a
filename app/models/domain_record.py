"""Domain record model for registered names."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, UTCDateTime, utcnow


class DomainStatus(str, Enum):
    """
    Lifecycle states of a domain record.

    Transitions:
    - PENDING -> ACTIVE (registration confirmed and verified)
    - PENDING -> REJECTED (confirmed registration failed verification, reject policy)
    - ACTIVE -> DELETING (deletion transaction submitted)
    - DELETING -> DELETED (deletion confirmed and verified)
    - DELETING -> ACTIVE (deletion failed, revert policy)
    - DELETING -> REVIEW (deletion failed, manual review policy)
    - REVIEW -> ACTIVE / DELETED (operator decision; deletion is re-verified)

    DELETED and REJECTED are terminal and free the name for a new record.
    """

    PENDING = "pending"
    ACTIVE = "active"
    DELETING = "deleting"
    DELETED = "deleted"
    REJECTED = "rejected"
    REVIEW = "review"


TERMINAL_STATUSES = frozenset({DomainStatus.DELETED, DomainStatus.REJECTED})
LIVE_STATUSES = frozenset(DomainStatus) - TERMINAL_STATUSES

# Shared by both dialects for the partial unique index
_LIVE_PREDICATE = text("status NOT IN ('deleted', 'rejected')")


class DomainRecord(Base):
    """Maps a name to the address that paid for it."""

    __tablename__ = "domain_records"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )

    # Name without suffix, lowercase
    domain: Mapped[str] = mapped_column(String(63), index=True, nullable=False)

    owner_address: Mapped[str] = mapped_column(String(128), index=True, nullable=False)

    # Transaction correlation
    tx_hash: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    deletion_tx_hash: Mapped[str | None] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        index=True,
        nullable=False,
        default=DomainStatus.PENDING.value,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        index=True,
        nullable=False,
    )
    last_verified_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )
    deletion_requested_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        # One live record per name; terminal rows are kept for history
        Index(
            "uq_domain_records_live_domain",
            "domain",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
    )

    @property
    def lifecycle_status(self) -> DomainStatus:
        return DomainStatus(self.status)

    @property
    def current_tx_hash(self) -> str:
        """Hash of the transaction that justifies the current status."""
        if self.deletion_tx_hash and self.status in (
            DomainStatus.DELETING.value,
            DomainStatus.DELETED.value,
            DomainStatus.REVIEW.value,
        ):
            return self.deletion_tx_hash
        return self.tx_hash

    @property
    def is_live(self) -> bool:
        return self.lifecycle_status in LIVE_STATUSES

    def __repr__(self) -> str:
        return f"<DomainRecord(domain={self.domain}, status={self.status})>"
