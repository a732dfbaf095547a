"""Wallet API routes."""

from fastapi import APIRouter, Depends, status

from app.config import settings
from app.dependencies import get_chain_client
from app.schemas.common import raise_api_error
from app.schemas.transaction import BalanceResponse
from app.services.chain_client import ChainClient, ChainGatewayError
from app.utils.domain_validator import validate_address

router = APIRouter()


@router.get("/wallets/{address}/balance", response_model=BalanceResponse)
async def get_balance(
    address: str,
    chain: ChainClient = Depends(get_chain_client),
) -> BalanceResponse:
    """
    Get an address balance and whether it covers the registration fee.

    **Errors:**
    - 400 `INVALID_ADDRESS`: malformed address
    - 503 `GATEWAY_ERROR`: chain RPC unavailable or address unknown
    """
    is_valid, error = validate_address(address)
    if not is_valid:
        raise_api_error(code="INVALID_ADDRESS", message=error or "Invalid address")

    try:
        balance = await chain.get_balance(address)
    except ChainGatewayError as e:
        raise_api_error(
            code="GATEWAY_ERROR",
            message=str(e),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True},
        )

    fee = settings.REGISTRATION_FEE
    affordable = int(balance.balance // fee) if fee > 0 else 0

    return BalanceResponse(
        address=address,
        balance=balance.balance,
        balance_raw=balance.balance_raw,
        registration_fee=fee,
        can_afford_registration=balance.balance >= fee,
        affordable_registrations=affordable,
    )
