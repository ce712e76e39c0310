"""
Outbox Store

Durable event log with lease ownership. All state transitions of an outbox
event go through this class:

    PENDING --claim--> PROCESSING --mark_sent--> SENT
    PROCESSING --mark_failed (retries remain)--> PENDING (available_at advanced)
    PROCESSING --mark_failed (exhausted / permanent)--> FAILED
    PROCESSING --lease expires--> claimable again

Every transition away from PROCESSING is conditional on the caller still
owning the lease (status = PROCESSING and locked_by = worker_id).
"""

import json
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ..database.adapter import (
    DatabaseAdapter,
    DatabaseBackend,
    Queryable,
    affected_rows,
    coerce_datetime,
)
from .models import (
    LAST_ERROR_MAX_LENGTH,
    MarkFailedOptions,
    MarkFailedOutcome,
    MarkFailedResult,
    OutboxEvent,
    OutboxStatus,
    QueueStats,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NewOutboxEvent(BaseModel):
    """Data for an event about to be appended to the outbox."""

    event_type: str
    payload: Any = Field(default_factory=dict)
    tenant_id: str
    correlation_id: Optional[str] = None
    available_at: Optional[datetime] = None


def compute_retry_delay_ms(attempts: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """Exponential backoff without jitter: base * 2^(attempts-1), capped."""
    exponent = max(0, attempts - 1)
    return int(min(max_delay_ms, base_delay_ms * (2 ** exponent)))


_PG_CLAIM = """
    WITH candidates AS (
        SELECT e.id
        FROM outbox_events e
        WHERE (
            (e.status = $1 AND e.available_at <= $2)
            OR (e.status = $3 AND e.locked_until IS NOT NULL AND e.locked_until < $2)
        )
        ORDER BY e.available_at ASC, e.created_at ASC
        LIMIT $4
        FOR UPDATE SKIP LOCKED
    )
    UPDATE outbox_events e
    SET status = $3,
        locked_by = $5,
        locked_until = $6,
        updated_at = $2
    FROM candidates
    WHERE e.id = candidates.id
    RETURNING e.*
"""

_SQLITE_SELECT_DUE = """
    SELECT id
    FROM outbox_events
    WHERE (
        (status = $1 AND available_at <= $2)
        OR (status = $3 AND locked_until IS NOT NULL AND locked_until < $2)
    )
    ORDER BY available_at ASC, created_at ASC
    LIMIT $4
"""


class OutboxStore:
    """
    Reads and writes the outbox_events table.

    Usage:
        store = OutboxStore(db)

        async with db.transaction() as tx:
            await tx.execute("UPDATE loyalty_accounts ...")
            await store.enqueue(NewOutboxEvent(...), tx=tx)

        events = await store.claim_pending(limit=10, worker_id="w1", lease_duration_ms=30000)
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        self._db = db
        self._clock = clock or _utcnow
        self._rng = rng or random.Random()

    def now(self) -> datetime:
        return self._clock()

    async def enqueue(self, data: NewOutboxEvent, tx: Optional[Queryable] = None) -> OutboxEvent:
        """
        Append a PENDING event.

        Pass the caller's transaction handle so that the event commits if and
        only if the accompanying domain write commits.
        """
        conn = tx or self._db
        now = self.now()
        event = OutboxEvent(
            id=uuid4(),
            tenant_id=data.tenant_id,
            event_type=data.event_type,
            payload=data.payload if data.payload is not None else {},
            correlation_id=data.correlation_id,
            status=OutboxStatus.PENDING,
            available_at=data.available_at or now,
            attempts=0,
            created_at=now,
            updated_at=now,
        )

        await conn.execute(
            """
            INSERT INTO outbox_events (
                id, tenant_id, event_type, payload_json, correlation_id,
                status, available_at, attempts, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            event.id,
            event.tenant_id,
            event.event_type,
            json.dumps(event.payload, default=str),
            event.correlation_id,
            OutboxStatus.PENDING.value,
            event.available_at,
            0,
            event.created_at,
            event.updated_at,
        )

        logger.debug(
            "Enqueued outbox event: id=%s type=%s tenant=%s",
            event.id, event.event_type, event.tenant_id
        )
        return event

    async def get(self, event_id: UUID) -> Optional[OutboxEvent]:
        row = await self._db.fetchrow("SELECT * FROM outbox_events WHERE id = $1", event_id)
        return OutboxEvent.from_row(row) if row else None

    async def claim_pending(
        self,
        limit: int,
        worker_id: str,
        lease_duration_ms: int,
    ) -> List[OutboxEvent]:
        """
        Atomically claim up to `limit` due events for `worker_id`.

        Due means PENDING with available_at <= now, or PROCESSING with an
        expired lease. Claimed rows become PROCESSING with
        locked_until = now + lease. Returned in (available_at, created_at) order.
        """
        now = self.now()
        limit = max(1, int(limit))
        locked_until = now + timedelta(milliseconds=max(1, int(lease_duration_ms)))

        if self._db.backend == DatabaseBackend.POSTGRESQL:
            rows = await self._db.fetch(
                _PG_CLAIM,
                OutboxStatus.PENDING.value,
                now,
                OutboxStatus.PROCESSING.value,
                limit,
                worker_id,
                locked_until,
            )
        else:
            rows = await self._claim_sqlite(now, limit, worker_id, locked_until)

        events = [OutboxEvent.from_row(row) for row in rows]
        events.sort(key=lambda e: (e.available_at, e.created_at))

        if events:
            logger.debug("Worker %s claimed %d outbox event(s)", worker_id, len(events))
        return events

    async def _claim_sqlite(
        self,
        now: datetime,
        limit: int,
        worker_id: str,
        locked_until: datetime,
    ) -> List[dict]:
        async with self._db.transaction() as tx:
            candidates = await tx.fetch(
                _SQLITE_SELECT_DUE,
                OutboxStatus.PENDING.value,
                now,
                OutboxStatus.PROCESSING.value,
                limit,
            )
            if not candidates:
                return []

            ids = [row["id"] for row in candidates]
            update_placeholders = ", ".join(f"${i}" for i in range(5, 5 + len(ids)))
            await tx.execute(
                f"""
                UPDATE outbox_events
                SET status = $1, locked_by = $2, locked_until = $3, updated_at = $4
                WHERE id IN ({update_placeholders})
                """,
                OutboxStatus.PROCESSING.value,
                worker_id,
                locked_until,
                now,
                *ids,
            )

            select_placeholders = ", ".join(f"${i}" for i in range(1, 1 + len(ids)))
            return await tx.fetch(
                f"SELECT * FROM outbox_events WHERE id IN ({select_placeholders})",
                *ids,
            )

    async def extend_lease(self, event_id: UUID, worker_id: str, lease_duration_ms: int) -> bool:
        """Push locked_until forward if `worker_id` still owns the event."""
        now = self.now()
        locked_until = now + timedelta(milliseconds=max(1, int(lease_duration_ms)))
        status = await self._db.execute(
            """
            UPDATE outbox_events
            SET locked_until = $1, updated_at = $2
            WHERE id = $3 AND status = $4 AND locked_by = $5
            """,
            locked_until,
            now,
            event_id,
            OutboxStatus.PROCESSING.value,
            worker_id,
        )
        return affected_rows(status) > 0

    async def mark_sent(self, event_id: UUID, worker_id: str) -> bool:
        """
        PROCESSING (owned by worker_id) -> SENT.

        Returns False without writing if ownership was lost, so a stale
        success never overrides a reclaimed event.
        """
        now = self.now()
        status = await self._db.execute(
            """
            UPDATE outbox_events
            SET status = $1,
                locked_by = NULL,
                locked_until = NULL,
                last_error = NULL,
                updated_at = $2
            WHERE id = $3 AND status = $4 AND locked_by = $5
            """,
            OutboxStatus.SENT.value,
            now,
            event_id,
            OutboxStatus.PROCESSING.value,
            worker_id,
        )
        return affected_rows(status) > 0

    async def mark_failed(self, event_id: UUID, options: MarkFailedOptions) -> MarkFailedResult:
        """
        Resolve a failed delivery: reschedule with backoff, or dead-letter.

        Returns SKIPPED when the event is no longer PROCESSING under
        options.worker_id.
        """
        lock_clause = " FOR UPDATE" if self._db.backend == DatabaseBackend.POSTGRESQL else ""

        async with self._db.transaction() as tx:
            current = await tx.fetchrow(
                f"SELECT attempts, status, locked_by FROM outbox_events WHERE id = $1{lock_clause}",
                event_id,
            )
            if not current:
                return MarkFailedResult(outcome=MarkFailedOutcome.SKIPPED)
            if (
                current["status"] != OutboxStatus.PROCESSING.value
                or current["locked_by"] != options.worker_id
            ):
                return MarkFailedResult(outcome=MarkFailedOutcome.SKIPPED)

            now = self.now()
            attempts = int(current["attempts"]) + 1
            last_error = (options.error or "")[:LAST_ERROR_MAX_LENGTH]
            exhausted = attempts >= options.max_attempts

            if not options.retryable or exhausted:
                await tx.execute(
                    """
                    UPDATE outbox_events
                    SET status = $1,
                        attempts = $2,
                        last_error = $3,
                        locked_by = NULL,
                        locked_until = NULL,
                        updated_at = $4
                    WHERE id = $5 AND status = $6 AND locked_by = $7
                    """,
                    OutboxStatus.FAILED.value,
                    attempts,
                    last_error,
                    now,
                    event_id,
                    OutboxStatus.PROCESSING.value,
                    options.worker_id,
                )
                return MarkFailedResult(outcome=MarkFailedOutcome.FAILED, attempts=attempts)

            delay_ms = compute_retry_delay_ms(
                attempts, options.retry_base_delay_ms, options.retry_max_delay_ms
            )
            jitter_bound = max(0, options.retry_jitter_ms)
            jitter_ms = self._rng.randint(0, jitter_bound) if jitter_bound > 0 else 0
            next_available_at = now + timedelta(milliseconds=delay_ms + jitter_ms)

            await tx.execute(
                """
                UPDATE outbox_events
                SET status = $1,
                    attempts = $2,
                    available_at = $3,
                    last_error = $4,
                    locked_by = NULL,
                    locked_until = NULL,
                    updated_at = $5
                WHERE id = $6 AND status = $7 AND locked_by = $8
                """,
                OutboxStatus.PENDING.value,
                attempts,
                next_available_at,
                last_error,
                now,
                event_id,
                OutboxStatus.PROCESSING.value,
                options.worker_id,
            )
            return MarkFailedResult(
                outcome=MarkFailedOutcome.RETRIED,
                attempts=attempts,
                next_available_at=next_available_at,
            )

    async def get_queue_stats(self, now: Optional[datetime] = None) -> QueueStats:
        """Count of due PENDING events and the age of the oldest one."""
        now = now or self.now()
        row = await self._db.fetchrow(
            """
            SELECT COUNT(*) AS due_count, MIN(created_at) AS oldest_created_at
            FROM outbox_events
            WHERE status = $1 AND available_at <= $2
            """,
            OutboxStatus.PENDING.value,
            now,
        )
        due_count = int(row["due_count"]) if row else 0
        oldest = coerce_datetime(row["oldest_created_at"]) if row else None

        age_ms = None
        if oldest is not None:
            age_ms = max(0, int((now - oldest).total_seconds() * 1000))

        return QueueStats(due_pending_count=due_count, oldest_due_pending_age_ms=age_ms)
