"""Lifecycle notifications for domain records."""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from app.database import utcnow
from app.utils.address_format import truncate_address

logger = logging.getLogger(__name__)


class DomainEventType(str, Enum):
    """Kinds of lifecycle change published to listeners."""

    PENDING = "pending"
    ACTIVATED = "activated"
    REJECTED = "rejected"
    DELETING = "deleting"
    DELETED = "deleted"
    REVERTED = "reverted"
    REVIEW = "review"


# Events that change the public resolver statistics
STATS_EVENTS = frozenset({
    DomainEventType.ACTIVATED,
    DomainEventType.DELETED,
    DomainEventType.REVERTED,
})


@dataclass(frozen=True)
class DomainEvent:
    """A single lifecycle change."""

    type: DomainEventType
    domain: str
    status: str
    tx_hash: str
    address: str
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def affects_stats(self) -> bool:
        return self.type in STATS_EVENTS


Listener = Callable[[DomainEvent], Awaitable[None] | None]


class NotificationService:
    """
    Explicit subscription channel between reconciliation and its consumers.

    Listeners may be plain functions or coroutines. A listener that raises
    is logged and skipped; the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, event: DomainEvent) -> None:
        """Deliver an event to every listener in subscription order."""
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(
                    f"Listener {getattr(listener, '__name__', listener)!r} failed "
                    f"for {event.type.value} event on {event.domain}"
                )


def log_domain_event(event: DomainEvent) -> None:
    """Default listener: record lifecycle changes in the service log."""
    logger.info(
        f"Domain {event.domain} {event.type.value} (status={event.status}, "
        f"tx={event.tx_hash}, owner={truncate_address(event.address)})"
    )
