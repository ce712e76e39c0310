"""
Tests for dead-letter inspection.
"""

import pytest

from relaycore.outbox import DeadLetterInspector, MarkFailedOptions, NewOutboxEvent


async def _dead_letter(store, event_type: str, tenant_id: str = "t1", error: str = "rejected"):
    event = await store.enqueue(NewOutboxEvent(event_type=event_type, tenant_id=tenant_id, payload={"x": 1}))
    await store.claim_pending(limit=1, worker_id="W1", lease_duration_ms=30_000)
    await store.mark_failed(event.id, MarkFailedOptions(worker_id="W1", error=error, retryable=False))
    return event


class TestDeadLetterInspector:
    """Read-only view of FAILED events."""

    @pytest.mark.asyncio
    async def test_lists_only_failed(self, db, store, clock):
        failed = await _dead_letter(store, "thing.created")
        await store.enqueue(NewOutboxEvent(event_type="thing.created", tenant_id="t1"))
        inspector = DeadLetterInspector(db)

        entries = await inspector.list_failed()

        assert [e.id for e in entries] == [failed.id]
        entry = entries[0]
        assert entry.payload == {"x": 1}
        assert entry.attempts == 1
        assert entry.last_error == "rejected"
        assert entry.to_dict()["id"] == str(failed.id)
        assert await inspector.count() == 1

    @pytest.mark.asyncio
    async def test_filters_and_stats(self, db, store, clock):
        await _dead_letter(store, "thing.created", tenant_id="t1")
        clock.advance(seconds=1)
        await _dead_letter(store, "thing.created", tenant_id="t2")
        clock.advance(seconds=1)
        newest = await _dead_letter(store, "thing.deleted", tenant_id="t1")
        inspector = DeadLetterInspector(db)

        assert await inspector.count(tenant_id="t1") == 2
        assert await inspector.count(event_type="thing.created") == 2
        assert await inspector.count(tenant_id="t2", event_type="thing.deleted") == 0

        latest = await inspector.list_failed(limit=1)
        assert [e.id for e in latest] == [newest.id]

        assert await inspector.stats_by_event_type() == {"thing.created": 2, "thing.deleted": 1}
        assert await inspector.stats_by_event_type(tenant_id="t2") == {"thing.created": 1}
