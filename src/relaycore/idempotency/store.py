"""
Idempotency Store

Create-once cache of results keyed by idempotency key. The unique primary key
on idempotency_records is what decides a race between two requests carrying
the same key: exactly one insert wins.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..database.adapter import DatabaseAdapter, Queryable, UniqueViolationError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DuplicateIdempotencyKeyError(Exception):
    """Another request already stored a result under this key."""

    def __init__(self, key: str):
        super().__init__(f"Idempotency key already processed: {key}")
        self.key = key


class IdempotencyStore:
    """
    Guards against duplicate processing of the same request.

    Usage:
        store = IdempotencyStore(db)
        cached = await store.get_result(key)
        if cached is None:
            result = await do_work()
            await store.mark_as_processed(key, result_json)
    """

    def __init__(self, db: DatabaseAdapter, clock: Optional[Callable[[], datetime]] = None):
        self._db = db
        self._clock = clock or _utcnow

    async def is_processed(self, key: str) -> bool:
        row = await self._db.fetchrow(
            "SELECT 1 AS found FROM idempotency_records WHERE key = $1",
            key,
        )
        return row is not None

    async def get_result(self, key: str) -> Optional[str]:
        """Stored result text for `key`, or None if the key is unknown."""
        return await self._db.fetchval(
            "SELECT result_json FROM idempotency_records WHERE key = $1",
            key,
        )

    async def mark_as_processed(
        self,
        key: str,
        result_json: str,
        tx: Optional[Queryable] = None,
    ) -> None:
        """
        Store the result for `key`.

        Raises:
            DuplicateIdempotencyKeyError: the key already has a stored result
        """
        conn = tx or self._db
        try:
            await conn.execute(
                """
                INSERT INTO idempotency_records (key, result_json, created_at)
                VALUES ($1, $2, $3)
                """,
                key,
                result_json,
                self._clock(),
            )
        except UniqueViolationError:
            logger.debug(f"Idempotency key {key} already processed")
            raise DuplicateIdempotencyKeyError(key) from None

        logger.debug(f"Idempotency key {key} marked as processed")
