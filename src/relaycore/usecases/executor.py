"""
Use-Case Executor

Wraps a business handler so that a request retried with the same idempotency
key has its effect at most once:

1. Derive a key from (input, context); handlers may opt out.
2. If a result is stored under the key, return it without calling the handler.
3. Otherwise run the handler. Errors propagate and nothing is stored, so a
   failed attempt can be retried with the same key.
4. On success, store the result under the key (after the handler's own
   transaction has committed) and return it.

Two concurrent requests with the same key both reach step 4; the create-once
insert lets exactly one win and the other returns the winner's result. A loser
that instead trips a handler's own uniqueness guard re-reads the key a few
times, since the winner stores its result only after committing.

Without an output model, results are returned as their decoded JSON on the
first call too, so a replay is equal to the original.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel

from ..database.adapter import UniqueViolationError
from ..errors import UseCaseError, ValidationError
from ..idempotency import DuplicateIdempotencyKeyError, IdempotencyStore
from ..observability import create_span, record_counter

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", contravariant=True)
OutputT = TypeVar("OutputT")

# Seconds between re-reads when a unique violation arrives before the
# winner's result is stored (about 1s in total).
DEFAULT_RACE_RETRY_DELAYS = (0.05, 0.1, 0.25, 0.5)


@dataclass
class UseCaseContext:
    """Who is asking, on whose behalf, and under which request."""
    tenant_id: str
    user_id: Optional[str] = None
    request_id: str = field(default_factory=lambda: str(uuid4()))
    correlation_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.correlation_id:
            self.correlation_id = self.request_id


class UseCaseHandler(Protocol[InputT, OutputT]):
    """
    A business operation.

    Optional members picked up by the executor:
        get_idempotency_key(input, ctx) -> Optional[str]
            Defaults to ctx.idempotency_key. Return None to opt out.
        output_model: pydantic model class used to decode replayed results.
    """

    name: str

    async def handle(self, input: InputT, ctx: UseCaseContext) -> OutputT:
        ...


def require_idempotency_key(ctx: UseCaseContext) -> str:
    """The request's idempotency key, for handlers that refuse to run without one."""
    key = (ctx.idempotency_key or "").strip()
    if not key:
        raise ValidationError("Idempotency-Key is required for this operation")
    return key


def serialize_output(output: Any) -> str:
    if isinstance(output, BaseModel):
        return output.model_dump_json()
    return json.dumps(output, sort_keys=True, default=str)


class UseCaseExecutor:
    """
    Runs handlers with idempotent replay.

    Usage:
        executor = UseCaseExecutor(IdempotencyStore(db))
        result = await executor.execute(RedeemLoyaltyPoints(db, outbox), payload, ctx)
    """

    def __init__(
        self,
        idempotency: IdempotencyStore,
        race_retry_delays: Sequence[float] = DEFAULT_RACE_RETRY_DELAYS,
    ):
        self._idempotency = idempotency
        self._race_retry_delays = tuple(race_retry_delays)

    def scoped_key(self, handler: UseCaseHandler, input: Any, ctx: UseCaseContext) -> Optional[str]:
        derive = getattr(handler, "get_idempotency_key", None)
        raw = derive(input, ctx) if derive is not None else ctx.idempotency_key
        if not raw:
            return None
        return f"{handler.name}:{ctx.tenant_id}:{raw}"

    async def execute(self, handler: UseCaseHandler, input: Any, ctx: UseCaseContext) -> Any:
        key = self.scoped_key(handler, input, ctx)

        with create_span(
            f"usecase.{handler.name}",
            {
                "usecase.name": handler.name,
                "usecase.tenant_id": ctx.tenant_id,
                "usecase.request_id": ctx.request_id,
                "usecase.idempotent": key is not None,
            },
        ) as span:
            if key is not None:
                stored = await self._idempotency.get_result(key)
                if stored is not None:
                    span.set_attribute("usecase.replayed", True)
                    return self._replay(handler, key, stored)

            try:
                output = await handler.handle(input, ctx)
            except UseCaseError as e:
                self._record(handler, "error")
                logger.info(
                    f"Use case {handler.name} rejected: {e.code.value}",
                    extra={"usecase": handler.name, "request_id": ctx.request_id, "error_code": e.code.value},
                )
                raise
            except UniqueViolationError:
                # A concurrent request with the same key got there first. Its
                # result is stored only after its transaction commits.
                if key is not None:
                    stored = await self._wait_for_result(key)
                    if stored is not None:
                        span.set_attribute("usecase.replayed", True)
                        return self._replay(handler, key, stored)
                self._record(handler, "error")
                raise

            if key is None:
                self._record(handler, "success")
                return output

            serialized = serialize_output(output)
            try:
                await self._idempotency.mark_as_processed(key, serialized)
            except DuplicateIdempotencyKeyError:
                stored = await self._idempotency.get_result(key)
                if stored is not None:
                    span.set_attribute("usecase.replayed", True)
                    return self._replay(handler, key, stored)

            self._record(handler, "success")
            # Same shape a replay of this key would return
            return self._decode(handler, serialized) if self._output_model(handler) is None else output

    async def _wait_for_result(self, key: str) -> Optional[str]:
        stored = await self._idempotency.get_result(key)
        for delay in self._race_retry_delays:
            if stored is not None:
                break
            await asyncio.sleep(delay)
            stored = await self._idempotency.get_result(key)
        if stored is None:
            logger.warning(f"No stored result for {key} after unique violation")
        return stored

    @staticmethod
    def _output_model(handler: UseCaseHandler) -> Optional[Type[BaseModel]]:
        return getattr(handler, "output_model", None)

    def _decode(self, handler: UseCaseHandler, stored: str) -> Any:
        output_model = self._output_model(handler)
        if output_model is not None:
            return output_model.model_validate_json(stored)
        return json.loads(stored)

    def _replay(self, handler: UseCaseHandler, key: str, stored: str) -> Any:
        self._record(handler, "replayed")
        record_counter("idempotency_hits_total", 1, {"usecase": handler.name})
        logger.info(f"Idempotent hit for {handler.name}, key={key}")
        return self._decode(handler, stored)

    @staticmethod
    def _record(handler: UseCaseHandler, outcome: str) -> None:
        record_counter("usecase_executions_total", 1, {"usecase": handler.name, "outcome": outcome})
