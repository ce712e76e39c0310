"""
Publisher contract and delivery errors.

A Publisher delivers one outbox event to whatever sits downstream (email,
webhook, message bus). The dispatcher only needs to know whether a delivery
succeeded and, if not, whether retrying can help.
"""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

from .models import OutboxEvent


class DeliveryResult(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


@runtime_checkable
class Publisher(Protocol):
    """
    Delivers events downstream.

    deliver() may return a DeliveryResult or None (success), or raise. Raised
    exceptions are retryable unless they carry retryable=False or
    permanent=True.
    """

    async def deliver(self, event: OutboxEvent) -> Optional[DeliveryResult]:
        ...


class DeliveryError(Exception):
    """Delivery failed; `retryable` tells the dispatcher whether to back off and retry."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class PermanentDeliveryError(DeliveryError):
    """Downstream rejected the event (e.g. schema rejection); goes straight to FAILED."""

    permanent = True

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class UnknownEventTypeError(PermanentDeliveryError):
    def __init__(self, event_type: str):
        super().__init__(f"No handler found for event type: {event_type}")
        self.event_type = event_type


class DeliveryTimeoutError(DeliveryError):
    def __init__(self, event_id: str, event_type: str, timeout_ms: int):
        super().__init__(
            f"Event {event_id} ({event_type}) timed out after {timeout_ms}ms",
            retryable=True,
        )


def is_retryable_error(error: BaseException) -> bool:
    """Classify a delivery exception. Unknown errors are treated as transient."""
    if getattr(error, "retryable", None) is False:
        return False
    if getattr(error, "permanent", None) is True:
        return False
    return True


EventHandler = Callable[[OutboxEvent], Awaitable[Optional[DeliveryResult]]]


class HandlerRegistry:
    """
    Publisher that routes events to per-type handlers.

    Usage:
        registry = HandlerRegistry()
        registry.register("engagement.loyalty.redeemed", send_redeem_email)
        dispatcher = OutboxDispatcher(store, registry)

    An event whose type has no handler fails permanently.
    """

    def __init__(self):
        self._handlers: Dict[str, EventHandler] = {}

    def register(self, event_type: str, handler: EventHandler) -> None:
        event_type = (event_type or "").strip()
        if not event_type:
            raise ValueError("handler_missing_event_type")
        if event_type in self._handlers:
            raise ValueError(f"duplicate_handler_for_event_type:{event_type}")
        self._handlers[event_type] = handler

    @property
    def event_types(self) -> List[str]:
        return sorted(self._handlers)

    async def deliver(self, event: OutboxEvent) -> Optional[DeliveryResult]:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            raise UnknownEventTypeError(event.event_type)
        return await handler(event)
