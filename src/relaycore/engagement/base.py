"""
Shared plumbing for engagement use cases.
"""

from typing import Any, Optional, Type
from uuid import UUID

from pydantic import BaseModel

from ..database.adapter import DatabaseAdapter
from ..outbox.store import OutboxStore
from ..usecases.executor import UseCaseContext


def as_uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class EngagementUseCase:
    """
    Base for handlers that write engagement rows and emit outbox events.

    The outbox store's clock stamps every row, so a single injected clock
    drives both domain and event timestamps.
    """

    name: str = "engagement"
    output_model: Optional[Type[BaseModel]] = None

    def __init__(self, db: DatabaseAdapter, outbox: OutboxStore):
        self._db = db
        self._outbox = outbox

    def get_idempotency_key(self, input: Any, ctx: UseCaseContext) -> Optional[str]:
        return ctx.idempotency_key

    def source_key(self, ctx: UseCaseContext) -> str:
        """Uniqueness key for rows this request writes (one per logical request)."""
        return f"{self.name}:{ctx.idempotency_key or ctx.request_id}"
