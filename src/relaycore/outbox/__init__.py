"""
Outbox Pattern Implementation

Provides transactional event publishing with at-least-once delivery.

Usage:
    from relaycore.outbox import OutboxStore, transactional_outbox

    store = OutboxStore(db)
    async with transactional_outbox(db, store) as txn:
        # This is atomic with your business transaction
        await txn.tx.execute("UPDATE loyalty_accounts ...")
        await txn.enqueue(
            event_type="engagement.loyalty.redeemed",
            payload={"accountId": account_id, "points": 10},
            tenant_id=tenant_id,
        )
"""

from .dispatcher import OutboxDispatcher, TickReport
from .dlq import DeadLetterEntry, DeadLetterInspector
from .models import (
    MarkFailedOptions,
    MarkFailedOutcome,
    MarkFailedResult,
    OutboxEvent,
    OutboxStatus,
    QueueStats,
)
from .producer import OutboxProducer, transactional_outbox
from .publisher import (
    DeliveryError,
    DeliveryResult,
    DeliveryTimeoutError,
    HandlerRegistry,
    PermanentDeliveryError,
    Publisher,
    UnknownEventTypeError,
)
from .store import NewOutboxEvent, OutboxStore, compute_retry_delay_ms

__all__ = [
    "OutboxDispatcher",
    "TickReport",
    "DeadLetterEntry",
    "DeadLetterInspector",
    "MarkFailedOptions",
    "MarkFailedOutcome",
    "MarkFailedResult",
    "OutboxEvent",
    "OutboxStatus",
    "QueueStats",
    "OutboxProducer",
    "transactional_outbox",
    "DeliveryError",
    "DeliveryResult",
    "DeliveryTimeoutError",
    "HandlerRegistry",
    "PermanentDeliveryError",
    "Publisher",
    "UnknownEventTypeError",
    "NewOutboxEvent",
    "OutboxStore",
    "compute_retry_delay_ms",
]
