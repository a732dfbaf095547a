"""Domain record request and response schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.config import settings
from app.models.domain_record import DomainRecord, DomainStatus
from app.utils.domain_validator import full_name, normalize_domain


class ClaimRequest(BaseModel):
    """Common fields of a registration claim."""

    domain: str = Field(..., description="Name to claim, with or without suffix")
    address: str = Field(..., description="Claiming address (transaction sender)")
    tx_hash: str = Field(..., min_length=1, description="Registration transaction hash")

    @field_validator("domain")
    @classmethod
    def normalize(cls, v: str) -> str:
        """Lowercase and strip the suffix; full validation happens in the service."""
        return normalize_domain(v, settings.DOMAIN_SUFFIX)

    @field_validator("address", "tx_hash")
    @classmethod
    def strip(cls, v: str) -> str:
        return v.strip()


class RegistrationRequest(ClaimRequest):
    """Request schema for registering a name from a confirmed payment."""


class CreateDomainRequest(ClaimRequest):
    """Request schema for the registry store's create endpoint."""

    status: Literal["pending", "active"] = Field(
        default="pending",
        description="pending admits an unverified claim; active verifies and registers",
    )


class DeletionRequest(BaseModel):
    """Request schema for starting a deletion."""

    tx_hash: str = Field(..., min_length=1, description="Deletion transaction hash")
    address: str | None = Field(default=None, description="Requesting owner address")


class ProcessTransactionRequest(BaseModel):
    """Optional body for transaction processing."""

    address: str | None = Field(default=None, description="Expected sender address")


class UpdateStatusRequest(BaseModel):
    """Request schema for overwriting a live record's status."""

    status: DomainStatus
    deletion_tx_hash: str | None = None


class UpdateStatusResponse(BaseModel):
    """Response for status overwrite."""

    success: bool = True
    updated: int


class DomainItem(BaseModel):
    """Domain record as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    domain: str
    full_name: str
    address: str
    tx_hash: str
    deletion_tx_hash: str | None
    status: str
    verified: bool
    created_at: datetime
    last_verified_at: datetime
    deletion_requested_at: datetime | None

    @classmethod
    def from_record(cls, record: DomainRecord, suffix: str | None = None) -> "DomainItem":
        """Build the API view of a record."""
        return cls(
            id=record.id,
            domain=record.domain,
            full_name=full_name(record.domain, suffix or settings.DOMAIN_SUFFIX),
            address=record.owner_address,
            tx_hash=record.tx_hash,
            deletion_tx_hash=record.deletion_tx_hash,
            status=record.status,
            verified=record.status == DomainStatus.ACTIVE.value,
            created_at=record.created_at,
            last_verified_at=record.last_verified_at,
            deletion_requested_at=record.deletion_requested_at,
        )


class DomainListResponse(BaseModel):
    """Response for list endpoints."""

    domains: list[DomainItem]


class AvailabilityResponse(BaseModel):
    """Response for name availability checks."""

    domain: str
    full_name: str
    available: bool


class StatsResponse(BaseModel):
    """Aggregate registry statistics."""

    total_domains: int
    total_users: int
    recent_registrations: int


class AddressDomainsResponse(DomainListResponse):
    """Records of one address, after reconciling unsettled ones."""

    address: str
