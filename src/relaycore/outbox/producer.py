"""
Outbox Producer

Appends events to the outbox within the same transaction as your business
writes: either both commit or both roll back.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional

from ..database.adapter import DatabaseAdapter, TransactionHandle
from .models import OutboxEvent
from .store import NewOutboxEvent, OutboxStore

logger = logging.getLogger(__name__)


class OutboxProducer:
    """
    Writes events to the outbox through one open transaction.

    Usage:
        async with transactional_outbox(db, store) as txn:
            await txn.tx.execute("UPDATE customer_packages ...")
            await txn.enqueue(
                event_type="engagement.package.consumed",
                payload={"packageId": str(package_id)},
                tenant_id=ctx.tenant_id,
                correlation_id=ctx.correlation_id,
            )
        # Both commit together or both roll back
    """

    def __init__(self, store: OutboxStore, tx: TransactionHandle):
        self.tx = tx
        self._store = store
        self._events: List[OutboxEvent] = []

    async def enqueue(
        self,
        event_type: str,
        payload: Any,
        tenant_id: str,
        correlation_id: Optional[str] = None,
        available_at: Optional[datetime] = None,
    ) -> OutboxEvent:
        """
        Append an event (visible to dispatchers only once the transaction commits).

        Args:
            event_type: Dotted event name (e.g., "engagement.loyalty.redeemed")
            payload: JSON-serializable body
            tenant_id: Owning tenant
            correlation_id: Request correlation id, carried to consumers
            available_at: Earliest delivery time (defaults to now)

        Returns:
            The created OutboxEvent
        """
        event = await self._store.enqueue(
            NewOutboxEvent(
                event_type=event_type,
                payload=payload,
                tenant_id=tenant_id,
                correlation_id=correlation_id,
                available_at=available_at,
            ),
            tx=self.tx,
        )
        self._events.append(event)
        return event

    @property
    def emitted_events(self) -> List[OutboxEvent]:
        """Events appended in this transaction."""
        return self._events.copy()


@asynccontextmanager
async def transactional_outbox(
    db: DatabaseAdapter,
    store: OutboxStore,
) -> AsyncIterator[OutboxProducer]:
    """
    Open a transaction and yield a producer bound to it.

    Usage:
        async with transactional_outbox(db, store) as txn:
            await txn.tx.execute("INSERT INTO ...")
            await txn.enqueue("thing.created", {...}, tenant_id)
    """
    async with db.transaction() as tx:
        producer = OutboxProducer(store, tx)
        yield producer

    if producer.emitted_events:
        logger.debug("Committed %d outbox event(s)", len(producer.emitted_events))
