"""Registry record API routes."""

import logging

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import get_reconciliation_service
from app.routes.registrations import raise_rejection, to_item
from app.schemas.common import raise_api_error
from app.schemas.domain import (
    AddressDomainsResponse,
    CreateDomainRequest,
    DomainItem,
    DomainListResponse,
    StatsResponse,
    UpdateStatusRequest,
    UpdateStatusResponse,
)
from app.services.reconciliation_service import ReconciliationService, Rejected
from app.utils.address_format import truncate_address

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/domains",
    response_model=DomainItem,
    status_code=status.HTTP_201_CREATED,
)
async def create_domain(
    request: CreateDomainRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainItem:
    """
    Create a domain record.

    **Request Body:**
    ```json
    { "domain": "alice", "address": "oct...", "tx_hash": "...", "status": "pending" }
    ```

    - `pending`: the claim is stored unverified and reconciled later
    - `active`: the transaction is verified first; the record is created
      only if verification succeeds

    **Errors:**
    - 409 `DOMAIN_TAKEN`: a live record already holds the name
    - 409 `TRANSACTION_REUSED`: the hash already backs another record
    """
    if request.status == "active":
        outcome = await service.register_domain(
            request.domain, request.address, request.tx_hash
        )
    else:
        outcome = await service.admit_pending_claim(
            request.domain, request.address, request.tx_hash
        )
    return to_item(outcome)


@router.put("/domains/{domain}/status", response_model=UpdateStatusResponse)
async def update_domain_status(
    domain: str,
    request: UpdateStatusRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> UpdateStatusResponse:
    """
    Move a name's live record along its lifecycle.

    Administrative escape hatch for stuck records. Only lifecycle
    transitions are accepted and the chain is consulted for each:
    `active` from `pending` and `deleted` re-verify the transaction,
    `deleting` needs `deletion_tx_hash` and an active record.

    **Errors:**
    - 400: the transaction does not verify, or `deletion_tx_hash` is missing
    - 404: no live record
    - 409: transition not allowed from the current status, or hash reused
    - 503: chain RPC unavailable (retryable)
    """
    outcome = await service.update_status(
        domain, request.status, request.deletion_tx_hash
    )
    if isinstance(outcome, Rejected):
        raise_rejection(outcome)

    return UpdateStatusResponse(updated=1)


@router.get("/domains/address/{address}", response_model=AddressDomainsResponse)
async def get_domains_for_address(
    address: str,
    refresh: bool = Query(False, description="Reconcile pending and deleting records first"),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> AddressDomainsResponse:
    """
    List all records of an address, newest first.

    With `refresh=true`, unsettled records are re-checked against the chain
    before listing.
    """
    if refresh:
        logger.debug(f"Reconciling records of {truncate_address(address)}")
        records = await service.reconcile_address(address)
    else:
        records = await service.get_records_for_address(address)

    return AddressDomainsResponse(
        address=address,
        domains=[DomainItem.from_record(record) for record in records],
    )


@router.get("/domains/resolve/{domain}", response_model=DomainItem)
async def resolve_domain(
    domain: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainItem:
    """
    Resolve a name to its owner.

    Only `active` records resolve; pending, deleting and deleted names
    return 404.
    """
    record = await service.resolve_domain(domain)
    if record is None:
        raise_api_error(
            code="NOT_FOUND",
            message=f"{domain} does not resolve",
            status_code=status.HTTP_404_NOT_FOUND,
        )
    return DomainItem.from_record(record)


@router.get("/domains/recent", response_model=DomainListResponse)
async def get_recent_domains(
    limit: int | None = Query(None, ge=1, le=100),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainListResponse:
    """Most recent active registrations."""
    records = await service.get_recent_domains(limit)
    return DomainListResponse(domains=[DomainItem.from_record(record) for record in records])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> StatsResponse:
    """Total active names, distinct owners, and registrations in the last 24 hours."""
    stats = await service.get_stats()
    return StatsResponse(
        total_domains=stats.total_domains,
        total_users=stats.total_users,
        recent_registrations=stats.recent_registrations,
    )
