"""Chain transaction and balance schemas."""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransactionStatus(str, Enum):
    """Confirmation state reported by the chain."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_FAILED_STATUSES = {"failed", "rejected", "dropped", "error"}


def _parse_amount(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class Transaction(BaseModel):
    """
    Read-only view of a chain transaction.

    The RPC wraps the payment fields in a ``parsed_tx`` envelope; use
    ``Transaction.from_rpc`` to unwrap it.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    hash: str
    sender: str | None = Field(default=None, alias="from")
    recipient: str | None = Field(default=None, alias="to")
    amount: Decimal | None = None
    message: str | None = None
    status: TransactionStatus = TransactionStatus.PENDING
    epoch: int | None = None
    nonce: int | None = None
    timestamp: float | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal | None:
        """Missing or malformed amounts become None."""
        return _parse_amount(v)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> TransactionStatus:
        """Map free-form chain status strings onto the three known states."""
        value = str(v or "").strip().lower()
        if value == TransactionStatus.CONFIRMED.value:
            return TransactionStatus.CONFIRMED
        if value in _FAILED_STATUSES:
            return TransactionStatus.FAILED
        return TransactionStatus.PENDING

    @property
    def is_confirmed(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED

    @classmethod
    def from_rpc(cls, payload: dict[str, Any], tx_hash: str | None = None) -> "Transaction":
        """
        Build a transaction from an RPC ``/tx/{hash}`` response.

        Args:
            payload: Decoded JSON body
            tx_hash: Hash that was requested, used when the body omits it

        Returns:
            Normalized transaction
        """
        parsed = payload.get("parsed_tx") or payload
        return cls(
            hash=payload.get("tx_hash") or payload.get("hash") or tx_hash or "",
            sender=parsed.get("from"),
            recipient=parsed.get("to"),
            amount=parsed.get("amount"),
            message=parsed.get("message"),
            status=payload.get("status"),
            epoch=payload.get("epoch"),
            nonce=parsed.get("nonce"),
            timestamp=parsed.get("timestamp"),
        )


class Balance(BaseModel):
    """Spendable balance of an address."""

    address: str
    balance: Decimal
    balance_raw: str

    @field_validator("balance", mode="before")
    @classmethod
    def validate_balance(cls, v: Any) -> Decimal:
        """Reject balances the chain sent in an unreadable form."""
        amount = _parse_amount(v)
        if amount is None:
            raise ValueError("Invalid balance value")
        return amount


class BalanceResponse(BaseModel):
    """Response for the wallet balance endpoint."""

    address: str
    balance: Decimal
    balance_raw: str
    registration_fee: Decimal
    can_afford_registration: bool
    affordable_registrations: int
