"""
Loyalty Use Cases

Points accounts with an append-only ledger. The account balance is the
running total of its ledger and never goes below zero.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from ..database.adapter import Queryable, affected_rows, coerce_datetime
from ..errors import ConflictError, ErrorCode
from ..outbox.producer import transactional_outbox
from ..usecases.executor import UseCaseContext
from .audit import record_audit
from .base import EngagementUseCase, as_uuid
from .events import LoyaltyEventType
from .models import (
    LoyaltyEntryType,
    LoyaltyLedgerEntry,
    LoyaltyPointsInput,
    LoyaltySummary,
    LoyaltySummaryInput,
    LoyaltyTransaction,
    event_payload,
    parse_input,
)

logger = logging.getLogger(__name__)


async def _find_account_id(conn: Queryable, tenant_id: str, customer_party_id: str) -> Optional[UUID]:
    account_id = await conn.fetchval(
        "SELECT id FROM loyalty_accounts WHERE tenant_id = $1 AND customer_party_id = $2",
        tenant_id,
        customer_party_id,
    )
    return as_uuid(account_id) if account_id is not None else None


async def _ensure_account(conn: Queryable, tenant_id: str, customer_party_id: str, now: datetime) -> UUID:
    await conn.execute(
        """
        INSERT INTO loyalty_accounts (
            id, tenant_id, customer_party_id, current_points_balance, created_at, updated_at
        ) VALUES ($1, $2, $3, 0, $4, $4)
        ON CONFLICT (tenant_id, customer_party_id) DO NOTHING
        """,
        uuid4(),
        tenant_id,
        customer_party_id,
        now,
    )
    return await _find_account_id(conn, tenant_id, customer_party_id)


async def _append_ledger(
    conn: Queryable,
    tenant_id: str,
    account_id: UUID,
    entry_type: LoyaltyEntryType,
    points_delta: int,
    reason: Optional[str],
    source_key: str,
    now: datetime,
) -> LoyaltyLedgerEntry:
    entry = LoyaltyLedgerEntry(
        id=uuid4(),
        entry_type=entry_type,
        points_delta=points_delta,
        reason=reason,
        created_at=now,
    )
    await conn.execute(
        """
        INSERT INTO loyalty_ledger (
            id, tenant_id, account_id, entry_type, points_delta, reason, source_key, created_at
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """,
        entry.id,
        tenant_id,
        account_id,
        entry_type.value,
        points_delta,
        reason,
        source_key,
        now,
    )
    return entry


class EarnLoyaltyPoints(EngagementUseCase):
    """Credit points, opening the account on first use."""

    name = "engagement.earn_loyalty_points"
    output_model = LoyaltyTransaction

    async def handle(self, input: Any, ctx: UseCaseContext) -> LoyaltyTransaction:
        data = parse_input(LoyaltyPointsInput, input)
        now = self._outbox.now()

        async with transactional_outbox(self._db, self._outbox) as txn:
            tx = txn.tx
            account_id = await _ensure_account(tx, ctx.tenant_id, data.customer_party_id, now)

            await tx.execute(
                """
                UPDATE loyalty_accounts
                SET current_points_balance = current_points_balance + $1, updated_at = $2
                WHERE id = $3
                """,
                data.points_delta,
                now,
                account_id,
            )
            entry = await _append_ledger(
                tx,
                ctx.tenant_id,
                account_id,
                LoyaltyEntryType.EARN,
                data.points_delta,
                data.reason,
                self.source_key(ctx),
                now,
            )
            balance = await tx.fetchval(
                "SELECT current_points_balance FROM loyalty_accounts WHERE id = $1",
                account_id,
            )
            result = LoyaltyTransaction(
                account_id=account_id,
                entry=entry,
                current_points_balance=int(balance),
            )

            await record_audit(
                tx,
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                action="loyalty.earn",
                entity_type="loyalty_account",
                entity_id=str(account_id),
                details={"pointsDelta": data.points_delta, "reason": data.reason},
                at=now,
            )
            await txn.enqueue(
                event_type=LoyaltyEventType.EARNED.value,
                payload=event_payload(result),
                tenant_id=ctx.tenant_id,
                correlation_id=ctx.correlation_id,
            )

        logger.info(f"Earned {data.points_delta} point(s) on account {account_id}")
        return result


class RedeemLoyaltyPoints(EngagementUseCase):
    """
    Debit points if the balance covers them.

    On insufficient balance nothing is written: no ledger entry, no balance
    change, no event.
    """

    name = "engagement.redeem_loyalty_points"
    output_model = LoyaltyTransaction

    async def handle(self, input: Any, ctx: UseCaseContext) -> LoyaltyTransaction:
        data = parse_input(LoyaltyPointsInput, input)
        now = self._outbox.now()

        async with transactional_outbox(self._db, self._outbox) as txn:
            tx = txn.tx
            account_id = await _find_account_id(tx, ctx.tenant_id, data.customer_party_id)

            status = "UPDATE 0"
            if account_id is not None:
                status = await tx.execute(
                    """
                    UPDATE loyalty_accounts
                    SET current_points_balance = current_points_balance - $1, updated_at = $2
                    WHERE id = $3 AND current_points_balance >= $1
                    """,
                    data.points_delta,
                    now,
                    account_id,
                )
            if affected_rows(status) == 0:
                raise ConflictError(
                    "Insufficient loyalty points balance",
                    code=ErrorCode.LOYALTY_INSUFFICIENT_BALANCE,
                )

            entry = await _append_ledger(
                tx,
                ctx.tenant_id,
                account_id,
                LoyaltyEntryType.REDEEM,
                -data.points_delta,
                data.reason,
                self.source_key(ctx),
                now,
            )
            balance = await tx.fetchval(
                "SELECT current_points_balance FROM loyalty_accounts WHERE id = $1",
                account_id,
            )
            result = LoyaltyTransaction(
                account_id=account_id,
                entry=entry,
                current_points_balance=int(balance),
            )

            await record_audit(
                tx,
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                action="loyalty.redeem",
                entity_type="loyalty_account",
                entity_id=str(account_id),
                details={"pointsDelta": -data.points_delta, "reason": data.reason},
                at=now,
            )
            await txn.enqueue(
                event_type=LoyaltyEventType.REDEEMED.value,
                payload=event_payload(result),
                tenant_id=ctx.tenant_id,
                correlation_id=ctx.correlation_id,
            )

        logger.info(f"Redeemed {data.points_delta} point(s) on account {account_id}")
        return result


class GetLoyaltySummary(EngagementUseCase):
    """Balance and most recent ledger entries. Read-only, so never cached."""

    name = "engagement.get_loyalty_summary"
    output_model = LoyaltySummary

    def get_idempotency_key(self, input: Any, ctx: UseCaseContext) -> Optional[str]:
        return None

    async def handle(self, input: Any, ctx: UseCaseContext) -> LoyaltySummary:
        data = parse_input(LoyaltySummaryInput, input)

        account = await self._db.fetchrow(
            """
            SELECT id, current_points_balance
            FROM loyalty_accounts
            WHERE tenant_id = $1 AND customer_party_id = $2
            """,
            ctx.tenant_id,
            data.customer_party_id,
        )
        if not account:
            return LoyaltySummary(customer_party_id=data.customer_party_id)

        rows = await self._db.fetch(
            """
            SELECT id, entry_type, points_delta, reason, created_at
            FROM loyalty_ledger
            WHERE account_id = $1
            ORDER BY created_at DESC, id DESC
            LIMIT $2
            """,
            account["id"],
            data.limit,
        )
        return LoyaltySummary(
            customer_party_id=data.customer_party_id,
            account_id=as_uuid(account["id"]),
            current_points_balance=int(account["current_points_balance"]),
            recent_entries=[
                LoyaltyLedgerEntry(
                    id=as_uuid(row["id"]),
                    entry_type=LoyaltyEntryType(row["entry_type"]),
                    points_delta=row["points_delta"],
                    reason=row["reason"],
                    created_at=coerce_datetime(row["created_at"]),
                )
                for row in rows
            ],
        )
