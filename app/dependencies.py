"""Shared FastAPI dependencies."""

from functools import lru_cache

from app.database import async_session_factory
from app.services.chain_client import ChainClient, chain_client
from app.services.notification_service import NotificationService
from app.services.reconciliation_service import ReconciliationService
from app.services.registry_store import SqlRegistryStore
from app.services.verification_service import VerificationService


def get_chain_client() -> ChainClient:
    return chain_client


@lru_cache
def get_registry_store() -> SqlRegistryStore:
    return SqlRegistryStore(async_session_factory)


@lru_cache
def get_notification_service() -> NotificationService:
    return NotificationService()


@lru_cache
def get_reconciliation_service() -> ReconciliationService:
    """
    Process-wide reconciliation service.

    A single instance is shared so per-name locks and the processed
    transaction cache cover every request.
    """
    return ReconciliationService(
        store=get_registry_store(),
        verifier=VerificationService(get_chain_client()),
        notifier=get_notification_service(),
    )
