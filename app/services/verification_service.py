"""
Transaction verification for registration and deletion claims.

A claim is valid only if the transaction it names is confirmed, paid to the
master address by the claimant, carries at least the fee for the action, and
its message is exactly the intent string for the action and name:

    register_domain:<name>.<suffix>
    delete_domain:<name>.<suffix>

Verification never mutates the registry and never raises for a rule
violation. Anyone holding the hash and the claimed parameters can recompute
the same verdict, which is what makes re-verification idempotent.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from app.config import Settings, settings
from app.schemas.transaction import Transaction, TransactionStatus
from app.services.chain_client import ChainClient, ChainGatewayError

logger = logging.getLogger(__name__)


class IntentAction(str, Enum):
    """Protocol actions encoded in a transaction message."""

    REGISTER = "register_domain"
    DELETE = "delete_domain"


@dataclass(frozen=True)
class Intent:
    """A parsed intent message."""

    action: IntentAction
    domain: str


class VerificationFailure(str, Enum):
    """Why a transaction does not satisfy a claim."""

    NOT_FOUND = "not_found"
    GATEWAY_ERROR = "gateway_error"
    NOT_CONFIRMED = "not_confirmed"
    TRANSACTION_FAILED = "transaction_failed"
    MISSING_FIELD = "missing_field"
    WRONG_RECIPIENT = "wrong_recipient"
    WRONG_SENDER = "wrong_sender"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    WRONG_MESSAGE = "wrong_message"


# Outcomes that may change on a later check
RETRYABLE_FAILURES = frozenset({
    VerificationFailure.NOT_FOUND,
    VerificationFailure.GATEWAY_ERROR,
    VerificationFailure.NOT_CONFIRMED,
})


@dataclass(frozen=True)
class VerificationResult:
    """Structured verdict for one claim."""

    valid: bool
    failure: VerificationFailure | None = None
    transaction: Transaction | None = None

    @property
    def retryable(self) -> bool:
        return self.failure in RETRYABLE_FAILURES

    def __bool__(self) -> bool:
        return self.valid


def build_intent_message(action: IntentAction, domain: str, suffix: str | None = None) -> str:
    """Return the exact message a transaction must carry for an action."""
    return f"{action.value}:{domain}.{suffix or settings.DOMAIN_SUFFIX}"


def parse_intent_message(message: str | None, suffix: str | None = None) -> Intent | None:
    """
    Parse a transaction message into an intent.

    Args:
        message: Raw message field of a transaction
        suffix: Protocol suffix without the dot

    Returns:
        Intent, or None if the message is not a protocol message
    """
    if not message:
        return None

    tail = f".{suffix or settings.DOMAIN_SUFFIX}"
    for action in IntentAction:
        prefix = f"{action.value}:"
        if message.startswith(prefix) and message.endswith(tail):
            domain = message[len(prefix):-len(tail)]
            if domain:
                return Intent(action=action, domain=domain)
    return None


class VerificationService:
    """Checks transactions against registration and deletion rules."""

    def __init__(self, chain: ChainClient, config: Settings = settings):
        self.chain = chain
        self.master_address = config.MASTER_ADDRESS
        self.suffix = config.DOMAIN_SUFFIX
        self.fees = {
            IntentAction.REGISTER: config.REGISTRATION_FEE,
            IntentAction.DELETE: config.DELETION_FEE,
        }

    def evaluate(
        self,
        transaction: Transaction,
        action: IntentAction,
        domain: str,
        address: str,
    ) -> VerificationResult:
        """
        Apply the protocol rules to an already fetched transaction.

        Args:
            transaction: Transaction to check
            action: Claimed action
            domain: Name without suffix
            address: Address that must have sent the payment

        Returns:
            VerificationResult; valid only if every rule holds
        """
        if transaction.status == TransactionStatus.PENDING:
            return VerificationResult(False, VerificationFailure.NOT_CONFIRMED, transaction)

        if transaction.status == TransactionStatus.FAILED:
            return VerificationResult(False, VerificationFailure.TRANSACTION_FAILED, transaction)

        if (
            transaction.recipient is None
            or transaction.sender is None
            or transaction.amount is None
            or transaction.message is None
        ):
            return VerificationResult(False, VerificationFailure.MISSING_FIELD, transaction)

        if transaction.recipient != self.master_address:
            return VerificationResult(False, VerificationFailure.WRONG_RECIPIENT, transaction)

        if transaction.sender != address:
            return VerificationResult(False, VerificationFailure.WRONG_SENDER, transaction)

        fee: Decimal = self.fees[action]
        if transaction.amount < fee:
            return VerificationResult(False, VerificationFailure.INSUFFICIENT_AMOUNT, transaction)

        if transaction.message != build_intent_message(action, domain, self.suffix):
            return VerificationResult(False, VerificationFailure.WRONG_MESSAGE, transaction)

        return VerificationResult(True, None, transaction)

    async def check(
        self,
        tx_hash: str,
        action: IntentAction,
        domain: str,
        address: str,
    ) -> VerificationResult:
        """Fetch a transaction and evaluate it; gateway faults become a retryable verdict."""
        try:
            transaction = await self.chain.get_transaction(tx_hash)
        except ChainGatewayError as e:
            logger.warning(f"Could not fetch transaction {tx_hash}: {e}")
            return VerificationResult(False, VerificationFailure.GATEWAY_ERROR)

        if transaction is None:
            return VerificationResult(False, VerificationFailure.NOT_FOUND)

        result = self.evaluate(transaction, action, domain, address)
        if not result.valid:
            logger.info(
                f"Transaction {tx_hash} does not satisfy {action.value} for {domain}: "
                f"{result.failure.value}"
            )
        return result

    async def check_registration(
        self, tx_hash: str, domain: str, claimant_address: str
    ) -> VerificationResult:
        return await self.check(tx_hash, IntentAction.REGISTER, domain, claimant_address)

    async def check_deletion(
        self, tx_hash: str, domain: str, owner_address: str
    ) -> VerificationResult:
        return await self.check(tx_hash, IntentAction.DELETE, domain, owner_address)

    async def verify_registration(self, tx_hash: str, domain: str, claimant_address: str) -> bool:
        """Return True only if the transaction proves a paid registration of the name."""
        return (await self.check_registration(tx_hash, domain, claimant_address)).valid

    async def verify_deletion(self, tx_hash: str, domain: str, owner_address: str) -> bool:
        """Return True only if the transaction proves a paid deletion of the name."""
        return (await self.check_deletion(tx_hash, domain, owner_address)).valid
