"""
Outbox Models

Record shapes for the outbox table and the results of store operations.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..database.adapter import coerce_datetime

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 2000


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class OutboxStatus(str, Enum):
    """Status of an outbox event."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"      # Terminal
    FAILED = "FAILED"  # Terminal (dead-letter)


TERMINAL_STATUSES = frozenset({OutboxStatus.SENT, OutboxStatus.FAILED})


def safe_parse_payload(payload_json: Optional[str]) -> Any:
    """Decode a stored payload, returning None for unreadable text."""
    try:
        return json.loads(payload_json or "{}")
    except (TypeError, ValueError):
        logger.warning("Outbox payload is not valid JSON; delivering None")
        return None


class OutboxEvent(BaseModel):
    """An event in the outbox table."""

    id: UUID = Field(default_factory=uuid4)
    tenant_id: str
    event_type: str
    payload: Any = None
    correlation_id: Optional[str] = None

    status: OutboxStatus = OutboxStatus.PENDING
    available_at: datetime = Field(default_factory=_utcnow)
    attempts: int = 0

    locked_by: Optional[str] = None
    locked_until: Optional[datetime] = None
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OutboxEvent":
        """Build an event from a database row of either backend."""
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            event_type=row["event_type"],
            payload=safe_parse_payload(row.get("payload_json")),
            correlation_id=row.get("correlation_id"),
            status=OutboxStatus(row["status"]),
            available_at=coerce_datetime(row["available_at"]),
            attempts=row["attempts"],
            locked_by=row.get("locked_by"),
            locked_until=coerce_datetime(row.get("locked_until")),
            last_error=row.get("last_error"),
            created_at=coerce_datetime(row["created_at"]),
            updated_at=coerce_datetime(row["updated_at"]),
        )


class MarkFailedOptions(BaseModel):
    """How a failed delivery should be resolved."""

    model_config = ConfigDict(frozen=True)

    worker_id: str
    error: str
    retryable: bool = True
    max_attempts: int = 3
    retry_base_delay_ms: int = 5000
    retry_max_delay_ms: int = 120000
    retry_jitter_ms: int = 250


class MarkFailedOutcome(str, Enum):
    RETRIED = "retried"
    FAILED = "failed"
    SKIPPED = "skipped"  # Ownership was lost; someone else resolved the event


class MarkFailedResult(BaseModel):
    outcome: MarkFailedOutcome
    attempts: Optional[int] = None
    next_available_at: Optional[datetime] = None


class QueueStats(BaseModel):
    """Backlog of due, unclaimed events."""

    due_pending_count: int
    oldest_due_pending_age_ms: Optional[int] = None
