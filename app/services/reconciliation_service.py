"""
Reconciliation of domain records with on-chain transactions.

Lifecycle:
    pending  -> active    registration confirmed and verified
    pending  -> rejected  confirmed registration fails verification (reject policy)
    active   -> deleting  deletion transaction submitted
    deleting -> deleted   deletion confirmed and verified
    deleting -> active    deletion failed or never confirmed (revert policy)
    deleting -> review    deletion failed or never confirmed (manual review policy)
    review   -> active    operator restores the name
    review   -> deleted   operator completes a verified deletion

Every read-verify-write for a name runs under that name's lock. The store's
unique index and compare-and-set updates decide races between processes.

Lifecycle-incompatible calls return a ``Rejected`` value instead of raising,
so callers can render them without exception handling. Only persistence
faults (RegistryStoreError) propagate.
"""

import asyncio
import contextlib
import logging
from collections import Counter, OrderedDict
from collections.abc import AsyncIterator, Hashable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Generic, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    stop_when_event_set,
    wait_exponential,
)

from app.config import Settings, settings
from app.database import utcnow
from app.models.domain_record import DomainRecord, DomainStatus
from app.schemas.transaction import Transaction, TransactionStatus
from app.services.chain_client import ChainGatewayError
from app.services.notification_service import (
    DomainEvent,
    DomainEventType,
    NotificationService,
)
from app.services.registry_store import (
    DomainTaken,
    RegistryConflict,
    RegistryStats,
    RegistryStore,
    TransactionAlreadyUsed,
)
from app.services.verification_service import (
    IntentAction,
    VerificationFailure,
    VerificationResult,
    VerificationService,
    parse_intent_message,
)
from app.utils.address_format import truncate_address
from app.utils.domain_validator import (
    full_name,
    normalize_domain,
    validate_address,
    validate_domain,
)

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class RejectionReason(str, Enum):
    """Why an operation was refused."""

    INVALID_DOMAIN = "invalid_domain"
    INVALID_ADDRESS = "invalid_address"
    DOMAIN_TAKEN = "domain_taken"
    TRANSACTION_REUSED = "transaction_reused"
    VERIFICATION_FAILED = "verification_failed"
    NOT_CONFIRMED = "not_confirmed"
    GATEWAY_ERROR = "gateway_error"
    INVALID_STATE = "invalid_state"
    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"
    NOT_PROTOCOL_TRANSACTION = "not_protocol_transaction"


@dataclass(frozen=True)
class Rejected:
    """Explicit refusal returned by reconciliation operations."""

    reason: RejectionReason
    message: str
    retryable: bool = False
    failure: VerificationFailure | None = None


class CancellationToken:
    """Cooperative cancellation for confirmation waits."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until cancelled, whichever comes first."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=seconds)


class BoundedCache(Generic[K, V]):
    """Insertion-ordered map that evicts its oldest entries past ``maxsize``."""

    def __init__(self, maxsize: int):
        self.maxsize = maxsize
        self._entries: OrderedDict[K, V] = OrderedDict()

    def put(self, key: K, value: V) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def get(self, key: K) -> V | None:
        return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _awaiting_confirmation(transaction: Transaction | None) -> bool:
    return transaction is None or transaction.status == TransactionStatus.PENDING


def _last_outcome(retry_state: RetryCallState) -> Transaction | None:
    # Re-raises the last ChainGatewayError if the window closed on an error
    return retry_state.outcome.result()


# Status changes an operator may request, besides moving active -> deleting
_ADMIN_TRANSITIONS: dict[DomainStatus, frozenset[DomainStatus]] = {
    DomainStatus.PENDING: frozenset({DomainStatus.ACTIVE, DomainStatus.REJECTED}),
    DomainStatus.DELETING: frozenset({
        DomainStatus.DELETED,
        DomainStatus.ACTIVE,
        DomainStatus.REVIEW,
    }),
    DomainStatus.REVIEW: frozenset({DomainStatus.ACTIVE, DomainStatus.DELETED}),
}


class ReconciliationService:
    """Applies verified chain state to the registry."""

    def __init__(
        self,
        store: RegistryStore,
        verifier: VerificationService,
        notifier: NotificationService | None = None,
        config: Settings = settings,
    ):
        self.store = store
        self.verifier = verifier
        self.notifier = notifier or NotificationService()
        self.config = config
        self.suffix = config.DOMAIN_SUFFIX

        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self._processed: BoundedCache[tuple[str, IntentAction], bool] = BoundedCache(
            config.PROCESSED_TX_CACHE_SIZE
        )
        self._invalid_claims: BoundedCache[tuple[str, IntentAction], VerificationFailure] = (
            BoundedCache(config.PROCESSED_TX_CACHE_SIZE)
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def lock_for(self, domain: str) -> AsyncIterator[None]:
        """
        Per-name mutex serializing every mutation of that name.

        A name's lock is dropped once nobody holds or waits for it.
        """
        lock = self._locks.get(domain)
        if lock is None:
            lock = self._locks[domain] = asyncio.Lock()
        self._lock_users[domain] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[domain] -= 1
            if not self._lock_users[domain]:
                del self._lock_users[domain]
                del self._locks[domain]

    def _normalize(self, domain: str) -> tuple[str, Rejected | None]:
        name = normalize_domain(domain, self.suffix)
        is_valid, error = validate_domain(name)
        if not is_valid:
            return name, Rejected(RejectionReason.INVALID_DOMAIN, error or "Invalid domain name")
        return name, None

    def _check_address(self, address: str) -> Rejected | None:
        is_valid, error = validate_address(address)
        if not is_valid:
            return Rejected(RejectionReason.INVALID_ADDRESS, error or "Invalid address")
        return None

    def _display(self, domain: str) -> str:
        return full_name(domain, self.suffix)

    @staticmethod
    def _verification_rejection(result: VerificationResult) -> Rejected:
        if result.failure == VerificationFailure.GATEWAY_ERROR:
            return Rejected(
                RejectionReason.GATEWAY_ERROR,
                "Chain RPC is unavailable, try again",
                retryable=True,
                failure=result.failure,
            )
        if result.retryable:
            return Rejected(
                RejectionReason.NOT_CONFIRMED,
                "Transaction is not confirmed yet",
                retryable=True,
                failure=result.failure,
            )
        return Rejected(
            RejectionReason.VERIFICATION_FAILED,
            f"Transaction does not satisfy the protocol ({result.failure.value})",
            failure=result.failure,
        )

    async def _publish(self, event_type: DomainEventType, record: DomainRecord) -> None:
        await self.notifier.publish(
            DomainEvent(
                type=event_type,
                domain=record.domain,
                status=record.status,
                tx_hash=record.current_tx_hash,
                address=record.owner_address,
            )
        )

    async def _touch(self, record: DomainRecord) -> DomainRecord:
        return await self.store.touch(record.id) or record

    async def _reread(self, record: DomainRecord) -> DomainRecord:
        return await self.store.get_record(record.id) or record

    async def _replay(
        self,
        tx_hash: str,
        action: IntentAction,
        domain: str,
        address: str | None = None,
    ) -> DomainRecord | None:
        """Current record for an already applied (hash, action), if the caller owns it."""
        if (tx_hash, action) not in self._processed:
            return None
        record = await self.store.get_by_tx_hash(tx_hash)
        if record is None or record.domain != domain:
            return None
        if address is None or record.owner_address == address:
            logger.debug(f"Duplicate {action.value} delivery for {tx_hash}; returning current record")
            return record
        return None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_domain(
        self, domain: str, address: str, tx_hash: str
    ) -> DomainRecord | Rejected:
        """
        Register a name from a confirmed payment.

        Verifies the transaction, then inserts an active record or promotes
        the claimant's own pending record.

        Args:
            domain: Name, with or without suffix
            address: Claiming address (must be the transaction sender)
            tx_hash: Registration transaction hash

        Returns:
            Active record, or Rejected
        """
        name, rejection = self._normalize(domain)
        if rejection is None:
            rejection = self._check_address(address)
        if rejection is not None:
            return rejection

        replay = await self._replay(tx_hash, IntentAction.REGISTER, name, address)
        if replay is not None:
            return replay

        async with self.lock_for(name):
            existing = await self.store.get_live_record(name)
            if existing is not None:
                if existing.owner_address != address:
                    return Rejected(
                        RejectionReason.DOMAIN_TAKEN,
                        f"{self._display(name)} is already registered",
                    )
                if existing.status == DomainStatus.ACTIVE.value:
                    if existing.tx_hash == tx_hash:
                        self._processed.put((tx_hash, IntentAction.REGISTER), True)
                        return existing
                    return Rejected(
                        RejectionReason.DOMAIN_TAKEN,
                        f"{self._display(name)} is already registered to this address",
                    )
                if existing.status != DomainStatus.PENDING.value:
                    return Rejected(
                        RejectionReason.INVALID_STATE,
                        f"{self._display(name)} is {existing.status}",
                    )

            result = await self.verifier.check_registration(tx_hash, name, address)
            if not result.valid:
                return self._verification_rejection(result)

            try:
                if existing is not None:
                    record = await self.store.transition(
                        existing.id,
                        DomainStatus.PENDING,
                        DomainStatus.ACTIVE,
                        tx_hash=tx_hash,
                    )
                    if record is None:
                        return Rejected(
                            RejectionReason.INVALID_STATE,
                            f"{self._display(name)} changed while registering",
                            retryable=True,
                        )
                else:
                    record = await self.store.create_record(
                        name, address, tx_hash, DomainStatus.ACTIVE
                    )
            except DomainTaken:
                return Rejected(
                    RejectionReason.DOMAIN_TAKEN,
                    f"{self._display(name)} is already registered",
                )
            except TransactionAlreadyUsed:
                return Rejected(
                    RejectionReason.TRANSACTION_REUSED,
                    f"Transaction {tx_hash} already backs another record",
                )

            self._processed.put((tx_hash, IntentAction.REGISTER), True)

        logger.info(f"Registered {self._display(name)} to {truncate_address(address)}")
        await self._publish(DomainEventType.ACTIVATED, record)
        return record

    async def admit_pending_claim(
        self, domain: str, address: str, tx_hash: str
    ) -> DomainRecord | Rejected:
        """
        Record a submitted but unconfirmed registration without verifying it.

        Repeating the same (domain, tx_hash) returns the existing record; a
        pending claim is never overwritten by a different transaction.

        Returns:
            Pending (or already active) record, or Rejected
        """
        name, rejection = self._normalize(domain)
        if rejection is None:
            rejection = self._check_address(address)
        if rejection is not None:
            return rejection

        replay = await self._replay(tx_hash, IntentAction.REGISTER, name, address)
        if replay is not None:
            return replay

        async with self.lock_for(name):
            existing = await self.store.get_live_record(name)
            if existing is not None:
                if existing.tx_hash == tx_hash and existing.owner_address == address:
                    return existing
                return Rejected(
                    RejectionReason.DOMAIN_TAKEN,
                    f"{self._display(name)} is already claimed",
                )

            try:
                record = await self.store.create_record(
                    name, address, tx_hash, DomainStatus.PENDING
                )
            except DomainTaken:
                return Rejected(
                    RejectionReason.DOMAIN_TAKEN,
                    f"{self._display(name)} is already claimed",
                )
            except TransactionAlreadyUsed:
                return Rejected(
                    RejectionReason.TRANSACTION_REUSED,
                    f"Transaction {tx_hash} already backs another record",
                )

        logger.info(f"Admitted pending claim for {self._display(name)} (tx={tx_hash})")
        await self._publish(DomainEventType.PENDING, record)
        return record

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_domain(
        self, domain: str, tx_hash: str, address: str | None = None
    ) -> DomainRecord | Rejected:
        """
        Start deleting an active name.

        The record moves to deleting right away; ``reconcile`` completes the
        deletion once the transaction confirms and verifies.

        Args:
            domain: Name, with or without suffix
            tx_hash: Deletion transaction hash
            address: Requesting address; must own the name when given

        Returns:
            Deleting record, or Rejected
        """
        name, rejection = self._normalize(domain)
        if rejection is not None:
            return rejection

        replay = await self._replay(tx_hash, IntentAction.DELETE, name, address)
        if replay is not None:
            return replay

        async with self.lock_for(name):
            applied = await self.store.get_by_tx_hash(tx_hash)
            if (
                applied is not None
                and applied.domain == name
                and applied.deletion_tx_hash == tx_hash
                and applied.status == DomainStatus.DELETED.value
                and (address is None or applied.owner_address == address)
            ):
                return applied

            record = await self.store.get_live_record(name)
            if record is None:
                latest = await self.store.get_latest_record(name)
                if latest is None:
                    return Rejected(
                        RejectionReason.NOT_FOUND,
                        f"{self._display(name)} is not registered",
                    )
                return Rejected(
                    RejectionReason.INVALID_STATE,
                    f"{self._display(name)} is {latest.status}",
                )

            if address is not None and record.owner_address != address:
                return Rejected(
                    RejectionReason.NOT_OWNER,
                    f"{self._display(name)} is not owned by {truncate_address(address)}",
                )

            if (
                record.status == DomainStatus.DELETING.value
                and record.deletion_tx_hash == tx_hash
            ):
                return record

            if record.status != DomainStatus.ACTIVE.value:
                return Rejected(
                    RejectionReason.INVALID_STATE,
                    f"Only active names can be deleted; {self._display(name)} is {record.status}",
                )

            if applied is not None:
                return Rejected(
                    RejectionReason.TRANSACTION_REUSED,
                    f"Transaction {tx_hash} already backs another record",
                )

            try:
                updated = await self.store.transition(
                    record.id,
                    DomainStatus.ACTIVE,
                    DomainStatus.DELETING,
                    deletion_tx_hash=tx_hash,
                    deletion_requested_at=utcnow(),
                )
            except RegistryConflict:
                return Rejected(
                    RejectionReason.TRANSACTION_REUSED,
                    f"Transaction {tx_hash} already backs another record",
                )
            if updated is None:
                return Rejected(
                    RejectionReason.INVALID_STATE,
                    f"{self._display(name)} changed while deleting",
                    retryable=True,
                )

        logger.info(f"Deletion requested for {self._display(name)} (tx={tx_hash})")
        await self._publish(DomainEventType.DELETING, updated)
        return updated

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, record: DomainRecord) -> DomainRecord:
        """
        Re-derive a record's status from the chain.

        Unresolved lookups (not found, still pending, RPC failure) leave the
        status unchanged. Every call stamps ``last_verified_at``.

        Args:
            record: Record to re-check; it is re-read under the name's lock

        Returns:
            The record after reconciliation
        """
        async with self.lock_for(record.domain):
            current = await self.store.get_record(record.id)
            if current is None:
                logger.warning(f"Record {record.id} for {record.domain} no longer exists")
                return record

            if current.status == DomainStatus.PENDING.value:
                updated, event = await self._reconcile_registration(current)
            elif current.status == DomainStatus.DELETING.value:
                updated, event = await self._reconcile_deletion(current)
            else:
                updated, event = await self._touch(current), None

        if event is not None:
            await self._publish(event, updated)
        return updated

    async def reconcile_domain(self, domain: str) -> DomainRecord | Rejected:
        """Reconcile the live record of a name."""
        name, rejection = self._normalize(domain)
        if rejection is not None:
            return rejection

        record = await self.store.get_live_record(name)
        if record is None:
            return Rejected(RejectionReason.NOT_FOUND, f"{self._display(name)} is not registered")
        return await self.reconcile(record)

    async def _reconcile_registration(
        self, record: DomainRecord
    ) -> tuple[DomainRecord, DomainEventType | None]:
        key = (record.tx_hash, IntentAction.REGISTER)
        known_failure = self._invalid_claims.get(key)
        if known_failure is not None:
            result = VerificationResult(False, known_failure)
        else:
            result = await self.verifier.check_registration(
                record.tx_hash, record.domain, record.owner_address
            )

        if result.valid:
            updated = await self.store.transition(
                record.id, DomainStatus.PENDING, DomainStatus.ACTIVE
            )
            if updated is None:
                return await self._reread(record), None
            self._processed.put(key, True)
            return updated, DomainEventType.ACTIVATED

        if result.retryable:
            return await self._touch(record), None

        # Confirmed transactions never change, so the verdict is final
        self._invalid_claims.put(key, result.failure)

        if self.config.INVALID_CLAIM_POLICY == "reject":
            updated = await self.store.transition(
                record.id, DomainStatus.PENDING, DomainStatus.REJECTED
            )
            if updated is None:
                return await self._reread(record), None
            logger.warning(
                f"Rejected claim on {self._display(record.domain)}: {result.failure.value}"
            )
            return updated, DomainEventType.REJECTED

        logger.warning(
            f"Claim on {self._display(record.domain)} is invalid ({result.failure.value}); "
            f"leaving it pending"
        )
        return await self._touch(record), None

    async def _reconcile_deletion(
        self, record: DomainRecord
    ) -> tuple[DomainRecord, DomainEventType | None]:
        if not record.deletion_tx_hash:
            # Never reverted to active: the record may never have been active
            logger.warning(f"{self._display(record.domain)} is deleting without a transaction")
            updated = await self.store.transition(
                record.id, DomainStatus.DELETING, DomainStatus.REVIEW
            )
            if updated is None:
                return await self._reread(record), None
            return updated, DomainEventType.REVIEW

        result = await self.verifier.check_deletion(
            record.deletion_tx_hash, record.domain, record.owner_address
        )

        if result.valid:
            updated = await self.store.transition(
                record.id, DomainStatus.DELETING, DomainStatus.DELETED
            )
            if updated is None:
                return await self._reread(record), None
            self._processed.put((record.deletion_tx_hash, IntentAction.DELETE), True)
            return updated, DomainEventType.DELETED

        if result.retryable:
            if (
                result.failure != VerificationFailure.GATEWAY_ERROR
                and self._deletion_window_expired(record)
            ):
                logger.warning(
                    f"Deletion of {self._display(record.domain)} did not confirm in time"
                )
                return await self._fail_deletion(record)
            return await self._touch(record), None

        logger.warning(
            f"Deletion transaction for {self._display(record.domain)} is invalid "
            f"({result.failure.value})"
        )
        return await self._fail_deletion(record)

    def _deletion_window_expired(self, record: DomainRecord) -> bool:
        if record.deletion_requested_at is None:
            return False
        window = timedelta(seconds=self.config.DELETION_CONFIRMATION_WINDOW_SECONDS)
        return utcnow() - record.deletion_requested_at > window

    async def _fail_deletion(
        self, record: DomainRecord
    ) -> tuple[DomainRecord, DomainEventType | None]:
        if self.config.DELETION_FAILURE_POLICY == "manual_review":
            updated = await self.store.transition(
                record.id, DomainStatus.DELETING, DomainStatus.REVIEW
            )
            event = DomainEventType.REVIEW
        else:
            updated = await self.store.transition(
                record.id,
                DomainStatus.DELETING,
                DomainStatus.ACTIVE,
                deletion_tx_hash=None,
                deletion_requested_at=None,
            )
            event = DomainEventType.REVERTED

        if updated is None:
            return await self._reread(record), None
        return updated, event

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    async def process_transaction(
        self, tx_hash: str, address: str | None = None
    ) -> DomainRecord | Rejected:
        """
        Apply whatever protocol action a transaction carries.

        Safe to call repeatedly for the same hash, e.g. when a wallet
        callback fires more than once.

        Args:
            tx_hash: Transaction hash reported by the wallet
            address: Expected sender; defaults to the transaction's sender

        Returns:
            Affected record, or Rejected
        """
        try:
            transaction = await self.verifier.chain.get_transaction(tx_hash)
        except ChainGatewayError as e:
            logger.warning(f"Could not fetch transaction {tx_hash}: {e}")
            return Rejected(
                RejectionReason.GATEWAY_ERROR,
                "Chain RPC is unavailable, try again",
                retryable=True,
                failure=VerificationFailure.GATEWAY_ERROR,
            )

        if transaction is None:
            return Rejected(
                RejectionReason.NOT_CONFIRMED,
                "Transaction is not visible on chain yet",
                retryable=True,
                failure=VerificationFailure.NOT_FOUND,
            )

        intent = parse_intent_message(transaction.message, self.suffix)
        if intent is None:
            return Rejected(
                RejectionReason.NOT_PROTOCOL_TRANSACTION,
                "Transaction does not carry a domain registration or deletion",
            )

        claimant = address or transaction.sender
        if not claimant or (transaction.sender and transaction.sender != claimant):
            return Rejected(
                RejectionReason.VERIFICATION_FAILED,
                "Transaction was not sent by the claiming address",
                failure=VerificationFailure.WRONG_SENDER,
            )

        if intent.action == IntentAction.REGISTER:
            if transaction.status == TransactionStatus.FAILED:
                return Rejected(
                    RejectionReason.VERIFICATION_FAILED,
                    "Transaction failed on chain",
                    failure=VerificationFailure.TRANSACTION_FAILED,
                )
            if transaction.is_confirmed:
                return await self.register_domain(intent.domain, claimant, tx_hash)
            return await self.admit_pending_claim(intent.domain, claimant, tx_hash)

        outcome = await self.delete_domain(intent.domain, tx_hash, claimant)
        if isinstance(outcome, Rejected) or transaction.status == TransactionStatus.PENDING:
            return outcome
        return await self.reconcile(outcome)

    async def wait_for_confirmation(
        self, tx_hash: str, token: CancellationToken | None = None
    ) -> Transaction | None:
        """
        Poll the chain until a transaction leaves the pending state.

        Polls with exponential backoff up to CONFIRMATION_MAX_WAIT_SECONDS.
        Cancelling the token stops the wait at the next check.

        Args:
            tx_hash: Transaction to watch
            token: Optional cancellation token

        Returns:
            The last transaction seen (confirmed, failed, or still pending),
            or None if the chain never reported it

        Raises:
            ChainGatewayError: If the window closed while the RPC was failing
        """
        token = token or CancellationToken()
        retrying = AsyncRetrying(
            retry=(
                retry_if_exception_type(ChainGatewayError)
                | retry_if_result(_awaiting_confirmation)
            ),
            stop=(
                stop_after_delay(self.config.CONFIRMATION_MAX_WAIT_SECONDS)
                | stop_when_event_set(token)
            ),
            wait=wait_exponential(
                multiplier=self.config.CONFIRMATION_POLL_MIN_SECONDS,
                min=self.config.CONFIRMATION_POLL_MIN_SECONDS,
                max=self.config.CONFIRMATION_POLL_MAX_SECONDS,
            ),
            sleep=token.sleep,
            retry_error_callback=_last_outcome,
        )
        return await retrying(self.verifier.chain.get_transaction, tx_hash)

    async def watch_domain(
        self, domain: str, token: CancellationToken | None = None
    ) -> DomainRecord | Rejected:
        """
        Wait for the live record's transaction to settle, then reconcile it.

        Returns:
            Reconciled record, or Rejected if the name has no live record or
            the chain stayed unreachable
        """
        name, rejection = self._normalize(domain)
        if rejection is not None:
            return rejection

        record = await self.store.get_live_record(name)
        if record is None:
            return Rejected(RejectionReason.NOT_FOUND, f"{self._display(name)} is not registered")

        if record.status not in (DomainStatus.PENDING.value, DomainStatus.DELETING.value):
            return record

        try:
            await self.wait_for_confirmation(record.current_tx_hash, token)
        except ChainGatewayError as e:
            logger.warning(f"Gave up waiting for {record.current_tx_hash}: {e}")
            return Rejected(
                RejectionReason.GATEWAY_ERROR,
                "Chain RPC is unavailable, try again",
                retryable=True,
                failure=VerificationFailure.GATEWAY_ERROR,
            )

        return await self.reconcile(record)

    async def reconcile_address(self, address: str) -> list[DomainRecord]:
        """Reconcile every unsettled record of an address and return all its records."""
        records = await self.store.list_by_address(address)
        for record in records:
            if record.status in (DomainStatus.PENDING.value, DomainStatus.DELETING.value):
                await self.reconcile(record)
        return await self.store.list_by_address(address)

    async def update_status(
        self,
        domain: str,
        status: DomainStatus,
        deletion_tx_hash: str | None = None,
    ) -> DomainRecord | Rejected:
        """
        Administrative status change of a name's live record.

        Only lifecycle transitions are accepted, and each must still be
        justified by the chain:
        - pending -> active re-verifies the registration transaction
        - pending -> rejected needs the claim to be confirmed invalid
        - -> deleted re-verifies the deletion transaction
        - -> deleting goes through ``delete_domain``

        Args:
            domain: Name, with or without suffix
            status: Target status
            deletion_tx_hash: Deletion transaction; required for ``deleting``

        Returns:
            Updated record, or Rejected
        """
        name, rejection = self._normalize(domain)
        if rejection is not None:
            return rejection

        if status == DomainStatus.DELETING:
            if not deletion_tx_hash:
                return Rejected(
                    RejectionReason.VERIFICATION_FAILED,
                    "A deletion transaction hash is required",
                )
            return await self.delete_domain(name, deletion_tx_hash)

        async with self.lock_for(name):
            record = await self.store.get_live_record(name)
            if record is None:
                return Rejected(
                    RejectionReason.NOT_FOUND,
                    f"No live record for {self._display(name)}",
                )

            current = DomainStatus(record.status)
            if status not in _ADMIN_TRANSITIONS.get(current, ()):
                return Rejected(
                    RejectionReason.INVALID_STATE,
                    f"{self._display(name)} cannot move from {current.value} to {status.value}",
                )

            outcome = await self._apply_admin_transition(record, current, status)
            if isinstance(outcome, Rejected):
                return outcome
            updated, event = outcome

        logger.warning(f"Status of {self._display(name)} set to {status.value} by an operator")
        await self._publish(event, updated)
        return updated

    async def _apply_admin_transition(
        self, record: DomainRecord, current: DomainStatus, status: DomainStatus
    ) -> tuple[DomainRecord, DomainEventType] | Rejected:
        changes: dict = {}
        processed: tuple[str, IntentAction] | None = None

        if status == DomainStatus.ACTIVE and current == DomainStatus.PENDING:
            result = await self.verifier.check_registration(
                record.tx_hash, record.domain, record.owner_address
            )
            if not result.valid:
                return self._verification_rejection(result)
            processed = (record.tx_hash, IntentAction.REGISTER)
            event = DomainEventType.ACTIVATED
        elif status == DomainStatus.ACTIVE:
            changes = {"deletion_tx_hash": None, "deletion_requested_at": None}
            event = DomainEventType.REVERTED
        elif status == DomainStatus.REJECTED:
            result = await self.verifier.check_registration(
                record.tx_hash, record.domain, record.owner_address
            )
            if result.valid or result.retryable:
                return Rejected(
                    RejectionReason.INVALID_STATE,
                    f"Claim on {self._display(record.domain)} is not confirmed invalid",
                    retryable=result.retryable,
                    failure=result.failure,
                )
            event = DomainEventType.REJECTED
        elif status == DomainStatus.DELETED:
            if not record.deletion_tx_hash:
                return Rejected(
                    RejectionReason.INVALID_STATE,
                    f"{self._display(record.domain)} has no deletion transaction",
                )
            result = await self.verifier.check_deletion(
                record.deletion_tx_hash, record.domain, record.owner_address
            )
            if not result.valid:
                return self._verification_rejection(result)
            processed = (record.deletion_tx_hash, IntentAction.DELETE)
            event = DomainEventType.DELETED
        else:
            event = DomainEventType.REVIEW

        updated = await self.store.transition(record.id, current, status, **changes)
        if updated is None:
            return Rejected(
                RejectionReason.INVALID_STATE,
                f"{self._display(record.domain)} changed while updating",
                retryable=True,
            )
        if processed is not None:
            self._processed.put(processed, True)
        return updated, event

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def resolve_domain(self, domain: str) -> DomainRecord | None:
        """Active record for a name; pending, deleting and deleted names do not resolve."""
        return await self.store.resolve(normalize_domain(domain, self.suffix))

    async def check_availability(self, domain: str) -> bool:
        """True if the name is valid and no live record holds it."""
        name, rejection = self._normalize(domain)
        if rejection is not None:
            return False
        return await self.store.get_live_record(name) is None

    async def get_records_for_address(self, address: str) -> list[DomainRecord]:
        return await self.store.list_by_address(address)

    async def get_recent_domains(self, limit: int | None = None) -> list[DomainRecord]:
        return await self.store.recent_active(limit or self.config.RECENT_DOMAINS_DEFAULT_LIMIT)

    async def get_stats(self) -> RegistryStats:
        return await self.store.get_stats()
