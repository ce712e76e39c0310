"""
Dead Letter Inspection

Read-only view over outbox events that ended in FAILED, either because their
retries ran out or because delivery failed permanently.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from ..database.adapter import DatabaseAdapter, coerce_datetime
from .models import OutboxStatus, safe_parse_payload

logger = logging.getLogger(__name__)


@dataclass
class DeadLetterEntry:
    """A dead-lettered outbox event."""
    id: UUID
    tenant_id: str
    event_type: str
    payload: Any
    correlation_id: Optional[str]
    attempts: int
    last_error: Optional[str]
    created_at: datetime
    failed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "correlation_id": self.correlation_id,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
        }


class DeadLetterInspector:
    """
    Queries FAILED outbox events.

    Usage:
        inspector = DeadLetterInspector(db)
        entries = await inspector.list_failed(tenant_id="t1", limit=20)
        counts = await inspector.stats_by_event_type()
    """

    def __init__(self, db: DatabaseAdapter):
        self._db = db

    async def list_failed(
        self,
        limit: int = 100,
        offset: int = 0,
        tenant_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[DeadLetterEntry]:
        """Most recently failed first."""
        where, args = self._filters(tenant_id, event_type)
        args.extend([max(1, int(limit)), max(0, int(offset))])

        rows = await self._db.fetch(
            f"""
            SELECT id, tenant_id, event_type, payload_json, correlation_id,
                   attempts, last_error, created_at, updated_at
            FROM outbox_events
            WHERE {where}
            ORDER BY updated_at DESC, created_at DESC
            LIMIT ${len(args) - 1} OFFSET ${len(args)}
            """,
            *args,
        )

        return [
            DeadLetterEntry(
                id=row["id"] if isinstance(row["id"], UUID) else UUID(str(row["id"])),
                tenant_id=row["tenant_id"],
                event_type=row["event_type"],
                payload=safe_parse_payload(row["payload_json"]),
                correlation_id=row["correlation_id"],
                attempts=row["attempts"],
                last_error=row["last_error"],
                created_at=coerce_datetime(row["created_at"]),
                failed_at=coerce_datetime(row["updated_at"]),
            )
            for row in rows
        ]

    async def count(
        self,
        tenant_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> int:
        where, args = self._filters(tenant_id, event_type)
        result = await self._db.fetchval(
            f"SELECT COUNT(*) FROM outbox_events WHERE {where}",
            *args,
        )
        return int(result or 0)

    async def stats_by_event_type(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        """Dead-letter counts per event type."""
        where, args = self._filters(tenant_id, None)
        rows = await self._db.fetch(
            f"""
            SELECT event_type, COUNT(*) AS count
            FROM outbox_events
            WHERE {where}
            GROUP BY event_type
            ORDER BY event_type
            """,
            *args,
        )
        return {row["event_type"]: int(row["count"]) for row in rows}

    @staticmethod
    def _filters(tenant_id: Optional[str], event_type: Optional[str]) -> Tuple[str, List[Any]]:
        clauses = ["status = $1"]
        args: List[Any] = [OutboxStatus.FAILED.value]
        if tenant_id is not None:
            args.append(tenant_id)
            clauses.append(f"tenant_id = ${len(args)}")
        if event_type is not None:
            args.append(event_type)
            clauses.append(f"event_type = ${len(args)}")
        return " AND ".join(clauses), args
