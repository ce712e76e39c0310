"""
Outbox Dispatcher

Background worker that claims due outbox events under a lease, hands them to
the Publisher, and resolves each one as sent, retried or failed.

Any number of dispatchers may run against the same database; the store's
atomic claim is the only coordination between them.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple
from uuid import uuid4

from ..config import DispatcherConfig
from ..observability import create_span, record_counter, record_histogram
from .models import MarkFailedOptions, MarkFailedOutcome, MarkFailedResult, OutboxEvent, QueueStats
from .publisher import (
    DeliveryError,
    DeliveryResult,
    DeliveryTimeoutError,
    PermanentDeliveryError,
    Publisher,
    is_retryable_error,
)
from .store import OutboxStore

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What one dispatcher tick did."""
    claimed: int = 0
    processed: int = 0
    errors: int = 0
    duration_ms: int = 0


class OutboxDispatcher:
    """
    Processes outbox events and delivers them.

    Features:
    - Claims due events in batches under a lease (crash-safe, shareable queue)
    - Delivers through the Publisher with bounded concurrency
    - Extends the lease while a delivery is in flight
    - Times out slow deliveries as retryable failures
    - Retries with exponential backoff and jitter, then dead-letters

    Usage:
        dispatcher = OutboxDispatcher(store, publisher, DispatcherConfig.from_env())
        await dispatcher.start()
        ...
        await dispatcher.stop()

    Or drive it directly (tests, cron-style runners):
        report = await dispatcher.run_tick()
    """

    def __init__(
        self,
        store: OutboxStore,
        publisher: Publisher,
        config: Optional[DispatcherConfig] = None,
        worker_id: Optional[str] = None,
    ):
        self.store = store
        self.publisher = publisher
        self.config = config or DispatcherConfig()
        self.worker_id = worker_id or f"worker-{uuid4()}"
        self._limited = asyncio.Semaphore(self.config.limited_concurrency)
        self._running = False
        self._stopping = False
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop in the background."""
        if self._running:
            return

        self._running = True
        self._stopping = False
        self._wakeup.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("OutboxDispatcher started", extra={"worker_id": self.worker_id})

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop claiming new batches.

        With a timeout, the current batch gets that long to finish; anything
        still in flight afterwards is cancelled and left to lease expiry.
        """
        self._stopping = True
        self._running = False
        self._wakeup.set()

        if self._task:
            if timeout:
                await asyncio.wait({self._task}, timeout=timeout)
            if not self._task.done():
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("OutboxDispatcher stopped", extra={"worker_id": self.worker_id})

    async def _run(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                report = await self.run_tick()
                if report.claimed > 0:
                    continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("OutboxDispatcher tick failed: %s", e, exc_info=True)

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.config.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def get_queue_stats(self) -> QueueStats:
        return await self.store.get_queue_stats()

    async def run_tick(self) -> TickReport:
        """
        Claim and process batches until the queue is drained or the tick's
        time or item budget runs out.
        """
        config = self.config
        started = time.monotonic()
        report = TickReport()

        stats = await self.store.get_queue_stats()
        logger.info(
            "outbox.tick.start",
            extra={
                "worker_id": self.worker_id,
                "batch_size": config.batch_size,
                "concurrency": config.concurrency,
                "due_pending_count": stats.due_pending_count,
                "oldest_due_pending_age_ms": stats.oldest_due_pending_age_ms,
            },
        )

        while not self._stopping:
            if (time.monotonic() - started) * 1000 > config.tick_max_ms:
                logger.info("outbox.budget.time_exhausted", extra={"worker_id": self.worker_id})
                break
            if report.processed >= config.tick_max_items:
                logger.info(
                    "outbox.budget.items_exhausted",
                    extra={"worker_id": self.worker_id, "processed": report.processed},
                )
                break

            claim_limit = min(config.batch_size, config.tick_max_items - report.processed)
            events = await self.store.claim_pending(
                limit=claim_limit,
                worker_id=self.worker_id,
                lease_duration_ms=config.lease_duration_ms,
            )
            if not events:
                break

            report.claimed += len(events)
            record_counter("outbox_claimed_total", len(events))

            processed, errors = await self._process_batch(events)
            report.processed += processed
            report.errors += errors

        report.duration_ms = int((time.monotonic() - started) * 1000)
        record_histogram("outbox_tick_duration_seconds", report.duration_ms / 1000)
        logger.info(
            "outbox.tick.end",
            extra={
                "worker_id": self.worker_id,
                "claimed": report.claimed,
                "processed": report.processed,
                "errors": report.errors,
                "duration_ms": report.duration_ms,
            },
        )
        return report

    async def _process_batch(self, events: List[OutboxEvent]) -> Tuple[int, int]:
        """Run up to `concurrency` workers over the batch, in claim order."""
        pending = iter(events)
        processed = 0
        errors = 0

        async def worker() -> None:
            nonlocal processed, errors
            for event in pending:
                failed = await self._process_event(event)
                processed += 1
                if failed:
                    errors += 1

        workers = min(self.config.concurrency, len(events))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return processed, errors

    async def _process_event(self, event: OutboxEvent) -> bool:
        """Deliver one event and record the outcome. Returns True on failure."""
        heartbeat = asyncio.create_task(self._heartbeat(event))
        started = time.monotonic()
        attributes = {"event_type": event.event_type}

        try:
            with create_span(
                "outbox.deliver",
                {
                    "outbox.event_id": str(event.id),
                    "outbox.event_type": event.event_type,
                    "outbox.worker_id": self.worker_id,
                    "outbox.attempts": event.attempts,
                },
            ) as span:
                try:
                    await self._deliver(event)
                except Exception as e:
                    span.set_attribute("outbox.outcome", "error")
                    await self._resolve_failure(event, e)
                    return True

                span.set_attribute("outbox.outcome", "sent")
                await self._resolve_success(event)
                return False
        except Exception as e:
            # The store itself failed; the lease will return the event to the pool.
            logger.error(
                "outbox.resolve_failed",
                exc_info=True,
                extra={"worker_id": self.worker_id, "event_id": str(event.id), "error": str(e)},
            )
            return True
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            record_histogram("outbox_delivery_duration_seconds", time.monotonic() - started, attributes)

    async def _deliver(self, event: OutboxEvent) -> None:
        """Call the publisher under the per-event timeout; raise on any failure."""
        timeout_ms = self.config.event_timeout_ms

        async def call() -> Optional[DeliveryResult]:
            if event.event_type in self.config.limited_event_types:
                async with self._limited:
                    return await self.publisher.deliver(event)
            return await self.publisher.deliver(event)

        try:
            result = await asyncio.wait_for(call(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise DeliveryTimeoutError(str(event.id), event.event_type, timeout_ms) from None

        if result is None or result == DeliveryResult.SUCCESS:
            return
        if result == DeliveryResult.PERMANENT:
            raise PermanentDeliveryError(f"Publisher rejected event {event.id} ({event.event_type})")
        raise DeliveryError(f"Publisher could not deliver event {event.id} ({event.event_type})")

    async def _resolve_success(self, event: OutboxEvent) -> None:
        if await self.store.mark_sent(event.id, self.worker_id):
            record_counter("outbox_sent_total", 1, {"event_type": event.event_type})
            logger.debug("Delivered outbox event %s", event.id)
            return

        record_counter("outbox_skipped_total", 1, {"event_type": event.event_type})
        logger.info(
            "outbox.mark_sent.skipped",
            extra={"worker_id": self.worker_id, "event_id": str(event.id), "event_type": event.event_type},
        )

    async def _resolve_failure(self, event: OutboxEvent, error: Exception) -> MarkFailedResult:
        config = self.config
        retryable = is_retryable_error(error)
        message = str(error) or type(error).__name__

        result = await self.store.mark_failed(
            event.id,
            MarkFailedOptions(
                worker_id=self.worker_id,
                error=message,
                retryable=retryable,
                max_attempts=config.max_attempts,
                retry_base_delay_ms=config.retry_base_delay_ms,
                retry_max_delay_ms=config.retry_max_delay_ms,
                retry_jitter_ms=config.retry_jitter_ms,
            ),
        )

        extra = {
            "worker_id": self.worker_id,
            "event_id": str(event.id),
            "event_type": event.event_type,
            "retryable": retryable,
            "failure_outcome": result.outcome.value,
            "attempts": result.attempts,
            "next_available_at": result.next_available_at.isoformat() if result.next_available_at else None,
            "error": message,
        }
        metric_attributes = {"event_type": event.event_type}

        if result.outcome == MarkFailedOutcome.SKIPPED:
            record_counter("outbox_skipped_total", 1, metric_attributes)
            logger.info("outbox.mark_failed.skipped", extra=extra)
        elif result.outcome == MarkFailedOutcome.RETRIED:
            record_counter("outbox_retried_total", 1, metric_attributes)
            logger.warning("outbox.event.retry_scheduled", extra=extra)
        else:
            record_counter("outbox_failed_total", 1, metric_attributes)
            logger.error("outbox.event.failed", extra=extra)
        return result

    async def _heartbeat(self, event: OutboxEvent) -> None:
        """Keep extending the lease while the delivery runs."""
        interval = self.config.heartbeat_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                extended = await self.store.extend_lease(
                    event.id, self.worker_id, self.config.lease_duration_ms
                )
            except Exception as e:
                logger.warning(
                    "outbox.lease.extend_failed",
                    extra={"worker_id": self.worker_id, "event_id": str(event.id), "error": str(e)},
                )
                continue
            if not extended:
                logger.warning(
                    "outbox.lease.extend_skipped",
                    extra={"worker_id": self.worker_id, "event_id": str(event.id)},
                )
                return
