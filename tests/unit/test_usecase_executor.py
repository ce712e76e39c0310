"""
Tests for idempotent use-case execution.
"""

import asyncio
from uuid import uuid4

import pytest
from pydantic import BaseModel

from relaycore.database import UniqueViolationError
from relaycore.errors import ConflictError, ErrorCode, ValidationError
from relaycore.usecases import UseCaseContext, require_idempotency_key, serialize_output


class Counter(BaseModel):
    value: int
    label: str


class CountingHandler:
    """Handler with a visible side effect (the call count)."""

    name = "test.count"
    output_model = Counter

    def __init__(self):
        self.calls = 0

    async def handle(self, input, ctx):
        self.calls += 1
        return Counter(value=input["n"] * 10, label=f"call-{self.calls}")


class PlainHandler:
    """No output model: results replay as decoded JSON."""

    name = "test.plain"

    def __init__(self):
        self.calls = 0

    async def handle(self, input, ctx):
        self.calls += 1
        return {"echo": input, "calls": self.calls}


class OptOutHandler(CountingHandler):
    name = "test.read_only"

    def get_idempotency_key(self, input, ctx):
        return None


class FlakyHandler:
    name = "test.flaky"

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def handle(self, input, ctx):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConflictError("not yet", code=ErrorCode.LOYALTY_INSUFFICIENT_BALANCE)
        return {"ok": True}


def _ctx(key=None, tenant="t1") -> UseCaseContext:
    return UseCaseContext(tenant_id=tenant, user_id="u1", idempotency_key=key)


class TestUseCaseContext:
    def test_correlation_defaults_to_request_id(self):
        ctx = UseCaseContext(tenant_id="t1")
        assert ctx.request_id
        assert ctx.correlation_id == ctx.request_id

    def test_explicit_correlation(self):
        ctx = UseCaseContext(tenant_id="t1", correlation_id="corr-1")
        assert ctx.correlation_id == "corr-1"


class TestReplay:
    """Same key, same answer, one effect."""

    @pytest.mark.asyncio
    async def test_second_call_replays_without_handling(self, executor):
        handler = CountingHandler()

        first = await executor.execute(handler, {"n": 1}, _ctx("key-1"))
        second = await executor.execute(handler, {"n": 1}, _ctx("key-1"))

        assert handler.calls == 1
        assert first == second == Counter(value=10, label="call-1")
        assert isinstance(second, Counter)

    @pytest.mark.asyncio
    async def test_replay_returns_stored_result_even_for_different_input(self, executor):
        handler = CountingHandler()
        await executor.execute(handler, {"n": 1}, _ctx("key-1"))

        replayed = await executor.execute(handler, {"n": 5}, _ctx("key-1"))

        assert replayed.value == 10
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_plain_results_replay_as_json(self, executor):
        handler = PlainHandler()

        first = await executor.execute(handler, [1, 2], _ctx("key-1"))
        second = await executor.execute(handler, [1, 2], _ctx("key-1"))

        assert first == second == {"echo": [1, 2], "calls": 1}

    @pytest.mark.asyncio
    async def test_plain_results_with_non_json_values_match_on_replay(self, executor):
        class IssuesId:
            name = "test.issue_id"

            def __init__(self):
                self.calls = 0

            async def handle(self, input, ctx):
                self.calls += 1
                return {"id": uuid4()}

        handler = IssuesId()

        first = await executor.execute(handler, {}, _ctx("x"))
        second = await executor.execute(handler, {}, _ctx("x"))

        assert first == second
        assert isinstance(first["id"], str)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self, executor):
        handler = CountingHandler()

        await executor.execute(handler, {"n": 1}, _ctx("key-1"))
        await executor.execute(handler, {"n": 1}, _ctx("key-2"))

        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_tenant_and_handler(self, executor, idempotency):
        counting = CountingHandler()
        plain = PlainHandler()

        await executor.execute(counting, {"n": 1}, _ctx("shared", tenant="t1"))
        await executor.execute(counting, {"n": 1}, _ctx("shared", tenant="t2"))
        await executor.execute(plain, {"n": 1}, _ctx("shared", tenant="t1"))

        assert counting.calls == 2
        assert plain.calls == 1
        assert await idempotency.is_processed("test.count:t1:shared")
        assert await idempotency.is_processed("test.count:t2:shared")
        assert await idempotency.is_processed("test.plain:t1:shared")

    @pytest.mark.asyncio
    async def test_no_key_means_no_caching(self, executor):
        handler = CountingHandler()

        await executor.execute(handler, {"n": 1}, _ctx(None))
        await executor.execute(handler, {"n": 1}, _ctx(None))

        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_handler_can_opt_out(self, executor, idempotency):
        handler = OptOutHandler()

        await executor.execute(handler, {"n": 1}, _ctx("key-1"))
        await executor.execute(handler, {"n": 1}, _ctx("key-1"))

        assert handler.calls == 2
        assert not await idempotency.is_processed("test.read_only:t1:key-1")


class TestErrors:
    """Only successes are cached."""

    @pytest.mark.asyncio
    async def test_errors_propagate_and_are_not_cached(self, executor, idempotency):
        handler = FlakyHandler(failures=1)

        with pytest.raises(ConflictError) as exc_info:
            await executor.execute(handler, {}, _ctx("key-1"))
        assert exc_info.value.code == ErrorCode.LOYALTY_INSUFFICIENT_BALANCE
        assert not await idempotency.is_processed("test.flaky:t1:key-1")

        # Same key may be retried after a failure
        assert await executor.execute(handler, {}, _ctx("key-1")) == {"ok": True}
        assert await executor.execute(handler, {}, _ctx("key-1")) == {"ok": True}
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_unique_violation_without_stored_result_propagates(self, executor):
        class Collides:
            name = "test.collides"

            async def handle(self, input, ctx):
                raise UniqueViolationError("duplicate source key")

        with pytest.raises(UniqueViolationError):
            await executor.execute(Collides(), {}, _ctx("key-1"))

    @pytest.mark.asyncio
    async def test_unique_violation_with_stored_result_replays(self, executor, idempotency):
        """A concurrent winner commits and stores its result while this request runs."""

        class Collides:
            name = "test.collides"

            async def handle(self, input, ctx):
                await idempotency.mark_as_processed("test.collides:t1:key-1", '{"winner": true}')
                raise UniqueViolationError("duplicate source key")

        result = await executor.execute(Collides(), {}, _ctx("key-1"))
        assert result == {"winner": True}

    @pytest.mark.asyncio
    async def test_unique_violation_waits_for_late_winner_result(self, executor, idempotency):
        """The winner's commit unblocks this request before the winner stores its result."""

        async def store_later():
            await asyncio.sleep(0.02)
            await idempotency.mark_as_processed("test.collides:t1:key-1", '{"winner": true}')

        class Collides:
            name = "test.collides"

            async def handle(self, input, ctx):
                self.winner = asyncio.ensure_future(store_later())
                raise UniqueViolationError("duplicate source key")

        handler = Collides()
        result = await executor.execute(handler, {}, _ctx("key-1"))

        assert result == {"winner": True}
        await handler.winner


class TestRaces:
    """Two requests with the same key at the same time."""

    @pytest.mark.asyncio
    async def test_loser_returns_winners_result(self, executor):
        started = asyncio.Event()
        release = asyncio.Event()

        class Racer:
            name = "test.race"

            def __init__(self):
                self.calls = 0

            async def handle(self, input, ctx):
                self.calls += 1
                mine = self.calls
                if mine == 1:
                    started.set()
                    await release.wait()
                return {"winner": mine}

        handler = Racer()

        async def slow():
            return await executor.execute(handler, {}, _ctx("key-1"))

        async def fast():
            await started.wait()
            result = await executor.execute(handler, {}, _ctx("key-1"))
            release.set()
            return result

        slow_result, fast_result = await asyncio.gather(slow(), fast())

        # Both ran (both missed the lookup); the second to store loses and replays
        assert handler.calls == 2
        assert fast_result == {"winner": 2}
        assert slow_result == {"winner": 2}


class TestHelpers:
    def test_require_idempotency_key(self):
        assert require_idempotency_key(_ctx(" key-1 ")) == "key-1"
        with pytest.raises(ValidationError):
            require_idempotency_key(_ctx(None))
        with pytest.raises(ValidationError):
            require_idempotency_key(_ctx("   "))

    def test_serialize_output(self):
        assert serialize_output({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'
        assert serialize_output(Counter(value=1, label="x")) == '{"value":1,"label":"x"}'
