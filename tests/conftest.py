"""Test fixtures for the ONS Resolver test suite."""

import os
import tempfile
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment variables BEFORE importing app modules
_TEST_DB_DIR = tempfile.mkdtemp(prefix="ons-resolver-test-")
os.environ.update({
    "DATABASE_URL": f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'app.db')}",
    "CHAIN_RPC_URL": "http://chain.test",
    "ENVIRONMENT": "test",
    "LOG_LEVEL": "WARNING",
})

from app.config import Settings  # noqa: E402
from app.database import build_engine, build_session_factory, drop_db, init_db  # noqa: E402
from app.dependencies import get_chain_client, get_reconciliation_service  # noqa: E402
from app.main import create_app  # noqa: E402
from app.schemas.transaction import Balance, Transaction, TransactionStatus  # noqa: E402
from app.services.chain_client import ChainGatewayError  # noqa: E402
from app.services.notification_service import DomainEvent, NotificationService  # noqa: E402
from app.services.reconciliation_service import ReconciliationService  # noqa: E402
from app.services.registry_store import SqlRegistryStore  # noqa: E402
from app.services.verification_service import VerificationService  # noqa: E402

MASTER = "oct8UYokvM1DR2QpTD4mncgvRzfM6f9yDuRR1gmBASgTk8d"
ALICE = "oct1111111111111111111111111111111111111111111"
BOB = "oct2222222222222222222222222222222222222222222"


class FakeChain:
    """In-memory stand-in for ChainClient."""

    def __init__(self) -> None:
        self.transactions: dict[str, Transaction] = {}
        self.balances: dict[str, Decimal] = {}
        self.fail = False
        self.calls = 0

    def add(
        self,
        tx_hash: str,
        *,
        sender: str = ALICE,
        message: str = "register_domain:alice.oct",
        amount: str = "0.5",
        recipient: str = MASTER,
        status: str = "confirmed",
    ) -> Transaction:
        transaction = Transaction(
            hash=tx_hash,
            sender=sender,
            recipient=recipient,
            amount=amount,
            message=message,
            status=status,
        )
        self.transactions[tx_hash] = transaction
        return transaction

    def confirm(self, tx_hash: str) -> None:
        self.transactions[tx_hash] = self.transactions[tx_hash].model_copy(
            update={"status": TransactionStatus.CONFIRMED}
        )

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        self.calls += 1
        if self.fail:
            raise ChainGatewayError("Chain RPC returned HTTP 502", status_code=502)
        return self.transactions.get(tx_hash)

    async def get_balance(self, address: str) -> Balance:
        if self.fail or address not in self.balances:
            raise ChainGatewayError(f"No balance available for {address}", status_code=404)
        amount = self.balances[address]
        return Balance(address=address, balance=amount, balance_raw=str(int(amount * 10**6)))

    async def aclose(self) -> None:
        pass


@pytest.fixture
def config() -> Settings:
    """Settings with fast confirmation polling."""
    return Settings(
        CONFIRMATION_POLL_MIN_SECONDS=0.01,
        CONFIRMATION_POLL_MAX_SECONDS=0.02,
        CONFIRMATION_MAX_WAIT_SECONDS=0.3,
    )


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await drop_db(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlRegistryStore:
    return SqlRegistryStore(session_factory)


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def notifier() -> NotificationService:
    return NotificationService()


@pytest.fixture
def events(notifier: NotificationService) -> list[DomainEvent]:
    """Events published during the test, in order."""
    received: list[DomainEvent] = []
    notifier.subscribe(received.append)
    return received


@pytest.fixture
def verifier(fake_chain: FakeChain, config: Settings) -> VerificationService:
    return VerificationService(fake_chain, config)


@pytest.fixture
def service(
    store: SqlRegistryStore,
    verifier: VerificationService,
    notifier: NotificationService,
    config: Settings,
) -> ReconciliationService:
    return ReconciliationService(store, verifier, notifier, config)


@pytest.fixture
async def client(
    service: ReconciliationService, fake_chain: FakeChain
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with test services injected."""
    app = create_app()
    app.dependency_overrides[get_reconciliation_service] = lambda: service
    app.dependency_overrides[get_chain_client] = lambda: fake_chain

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
