"""
Tests for transactional event production.
"""

import pytest

from relaycore.outbox import OutboxStatus, transactional_outbox


class TestTransactionalOutbox:
    """Domain write and event append share one transaction."""

    @pytest.mark.asyncio
    async def test_commit_persists_write_and_events(self, db, store):
        async with transactional_outbox(db, store) as txn:
            await txn.tx.execute(
                "INSERT INTO idempotency_records (key, result_json, created_at) VALUES ($1, $2, $3)",
                "domain-row", "{}", store.now(),
            )
            first = await txn.enqueue("thing.created", {"n": 1}, tenant_id="t1", correlation_id="c1")
            second = await txn.enqueue("thing.updated", {"n": 2}, tenant_id="t1")

        assert [e.id for e in txn.emitted_events] == [first.id, second.id]
        assert await db.fetchval("SELECT COUNT(*) FROM idempotency_records") == 1

        stored = await store.get(first.id)
        assert stored.status == OutboxStatus.PENDING
        assert stored.event_type == "thing.created"
        assert stored.payload == {"n": 1}
        assert stored.tenant_id == "t1"
        assert stored.correlation_id == "c1"

    @pytest.mark.asyncio
    async def test_failure_discards_write_and_events(self, db, store):
        """If the business write fails, no event leaks out."""
        with pytest.raises(RuntimeError):
            async with transactional_outbox(db, store) as txn:
                await txn.enqueue("thing.created", {"n": 1}, tenant_id="t1")
                await txn.tx.execute(
                    "INSERT INTO idempotency_records (key, result_json, created_at) VALUES ($1, $2, $3)",
                    "domain-row", "{}", store.now(),
                )
                raise RuntimeError("precondition failed after writes")

        assert await db.fetchval("SELECT COUNT(*) FROM outbox_events") == 0
        assert await db.fetchval("SELECT COUNT(*) FROM idempotency_records") == 0

    @pytest.mark.asyncio
    async def test_emitted_events_is_a_copy(self, db, store):
        async with transactional_outbox(db, store) as txn:
            await txn.enqueue("thing.created", {}, tenant_id="t1")
            txn.emitted_events.clear()
            assert len(txn.emitted_events) == 1
