"""Registration, deletion and reconciliation API routes."""

from fastapi import APIRouter, Body, Depends, status

from app.config import settings
from app.dependencies import get_reconciliation_service
from app.models.domain_record import DomainRecord
from app.schemas.common import raise_api_error
from app.schemas.domain import (
    AvailabilityResponse,
    DeletionRequest,
    DomainItem,
    ProcessTransactionRequest,
    RegistrationRequest,
)
from app.services.reconciliation_service import (
    ReconciliationService,
    Rejected,
    RejectionReason,
)
from app.utils.domain_validator import full_name, normalize_domain

router = APIRouter()

_REJECTION_STATUS = {
    RejectionReason.INVALID_DOMAIN: status.HTTP_400_BAD_REQUEST,
    RejectionReason.INVALID_ADDRESS: status.HTTP_400_BAD_REQUEST,
    RejectionReason.VERIFICATION_FAILED: status.HTTP_400_BAD_REQUEST,
    RejectionReason.NOT_PROTOCOL_TRANSACTION: status.HTTP_400_BAD_REQUEST,
    RejectionReason.NOT_OWNER: status.HTTP_403_FORBIDDEN,
    RejectionReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.DOMAIN_TAKEN: status.HTTP_409_CONFLICT,
    RejectionReason.TRANSACTION_REUSED: status.HTTP_409_CONFLICT,
    RejectionReason.INVALID_STATE: status.HTTP_409_CONFLICT,
    RejectionReason.NOT_CONFIRMED: status.HTTP_409_CONFLICT,
    RejectionReason.GATEWAY_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def raise_rejection(rejection: Rejected) -> None:
    """Translate a service rejection into the standard API error response."""
    details: dict = {"retryable": rejection.retryable}
    if rejection.failure is not None:
        details["failure"] = rejection.failure.value

    raise_api_error(
        code=rejection.reason.value.upper(),
        message=rejection.message,
        status_code=_REJECTION_STATUS.get(rejection.reason, status.HTTP_400_BAD_REQUEST),
        details=details,
    )


def to_item(outcome: DomainRecord | Rejected) -> DomainItem:
    """Return the API view of a record, or raise for a rejection."""
    if isinstance(outcome, Rejected):
        raise_rejection(outcome)
    return DomainItem.from_record(outcome)


@router.post(
    "/registrations",
    response_model=DomainItem,
    status_code=status.HTTP_201_CREATED,
)
async def register_domain(
    request: RegistrationRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainItem:
    """
    Register a name from a confirmed payment.

    The transaction must be confirmed, sent by `address` to the master
    address, carry at least the registration fee, and have the message
    `register_domain:<name>.oct`.

    **Request Body:**
    ```json
    { "domain": "alice", "address": "oct...", "tx_hash": "..." }
    ```

    **Errors:**
    - 400: invalid name or address, or the transaction fails verification
    - 409: name taken, transaction reused, or not confirmed yet (retryable)
    - 503: chain RPC unavailable (retryable)
    """
    outcome = await service.register_domain(request.domain, request.address, request.tx_hash)
    return to_item(outcome)


@router.post(
    "/registrations/pending",
    response_model=DomainItem,
    status_code=status.HTTP_202_ACCEPTED,
)
async def admit_pending_claim(
    request: RegistrationRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainItem:
    """
    Record a submitted registration before it confirms.

    The claim is stored as `pending` without verification and promoted by
    reconciliation once the transaction confirms. Pending names do not
    resolve.
    """
    outcome = await service.admit_pending_claim(
        request.domain, request.address, request.tx_hash
    )
    return to_item(outcome)


@router.post(
    "/domains/{domain}/deletion",
    response_model=DomainItem,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_deletion(
    domain: str,
    request: DeletionRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainItem:
    """
    Start deleting an active name.

    The record moves to `deleting` and stops resolving. It becomes
    `deleted` once the deletion transaction confirms and verifies.
    """
    outcome = await service.delete_domain(domain, request.tx_hash, request.address)
    return to_item(outcome)


@router.post("/domains/{domain}/reconcile", response_model=DomainItem)
async def reconcile_domain(
    domain: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainItem:
    """Re-check the live record of a name against the chain."""
    outcome = await service.reconcile_domain(domain)
    return to_item(outcome)


@router.post("/transactions/{tx_hash}/process", response_model=DomainItem)
async def process_transaction(
    tx_hash: str,
    request: ProcessTransactionRequest | None = Body(default=None),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> DomainItem:
    """
    Apply a wallet-reported transaction.

    Reads the intent from the transaction message and registers, admits,
    or deletes accordingly. Safe to call more than once for the same hash.
    """
    address = request.address if request else None
    outcome = await service.process_transaction(tx_hash, address)
    return to_item(outcome)


@router.get("/domains/{domain}/availability", response_model=AvailabilityResponse)
async def check_availability(
    domain: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> AvailabilityResponse:
    """Report whether a name is valid and free to register."""
    name = normalize_domain(domain, settings.DOMAIN_SUFFIX)
    available = await service.check_availability(name)
    return AvailabilityResponse(
        domain=name,
        full_name=full_name(name, settings.DOMAIN_SUFFIX),
        available=available,
    )
