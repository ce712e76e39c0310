"""
Customer Package Use Cases

Prepaid packages of units (e.g. "10 classes") that are consumed over time.
"""

import logging
from typing import Any
from uuid import uuid4

from ..database.adapter import affected_rows, coerce_datetime
from ..errors import ConflictError, ErrorCode, NotFoundError
from ..outbox.producer import transactional_outbox
from ..usecases.executor import UseCaseContext
from .audit import record_audit
from .base import EngagementUseCase, as_uuid
from .events import PackageEventType
from .models import (
    ConsumePackageInput,
    CreatePackageInput,
    CustomerPackage,
    PackageConsumption,
    event_payload,
    parse_input,
)

logger = logging.getLogger(__name__)


class CreateCustomerPackage(EngagementUseCase):
    """Sell a package: remaining units start at the total."""

    name = "engagement.create_customer_package"
    output_model = CustomerPackage

    async def handle(self, input: Any, ctx: UseCaseContext) -> CustomerPackage:
        data = parse_input(CreatePackageInput, input)
        now = self._outbox.now()

        package = CustomerPackage(
            id=uuid4(),
            tenant_id=ctx.tenant_id,
            customer_party_id=data.customer_party_id,
            name=data.name,
            total_units=data.total_units,
            remaining_units=data.total_units,
            created_at=now,
            updated_at=now,
        )

        async with transactional_outbox(self._db, self._outbox) as txn:
            await txn.tx.execute(
                """
                INSERT INTO customer_packages (
                    id, tenant_id, customer_party_id, name,
                    total_units, remaining_units, source_key, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                package.id,
                package.tenant_id,
                package.customer_party_id,
                package.name,
                package.total_units,
                package.remaining_units,
                self.source_key(ctx),
                now,
                now,
            )
            await record_audit(
                txn.tx,
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                action="package.create",
                entity_type="customer_package",
                entity_id=str(package.id),
                details={"name": package.name, "totalUnits": package.total_units},
                at=now,
            )
            await txn.enqueue(
                event_type=PackageEventType.CREATED.value,
                payload=event_payload(package),
                tenant_id=ctx.tenant_id,
                correlation_id=ctx.correlation_id,
            )

        logger.info(f"Created customer package {package.id} ({package.total_units} units)")
        return package


class ConsumeCustomerPackage(EngagementUseCase):
    """
    Use units from a package.

    The decrement is conditional on enough units remaining, so concurrent
    consumers can never drive the balance negative. When it does not apply,
    nothing is written and PACKAGE_INSUFFICIENT_UNITS is raised.
    """

    name = "engagement.consume_customer_package"
    output_model = PackageConsumption

    async def handle(self, input: Any, ctx: UseCaseContext) -> PackageConsumption:
        data = parse_input(ConsumePackageInput, input)
        now = self._outbox.now()
        usage_id = uuid4()

        async with transactional_outbox(self._db, self._outbox) as txn:
            tx = txn.tx
            existing = await tx.fetchrow(
                "SELECT id FROM customer_packages WHERE id = $1 AND tenant_id = $2",
                data.customer_package_id,
                ctx.tenant_id,
            )
            if not existing:
                raise NotFoundError("CustomerPackage", str(data.customer_package_id))

            status = await tx.execute(
                """
                UPDATE customer_packages
                SET remaining_units = remaining_units - $1, updated_at = $2
                WHERE id = $3 AND tenant_id = $4 AND remaining_units >= $1
                """,
                data.units_used,
                now,
                data.customer_package_id,
                ctx.tenant_id,
            )
            if affected_rows(status) == 0:
                raise ConflictError(
                    "Not enough units remaining in package",
                    code=ErrorCode.PACKAGE_INSUFFICIENT_UNITS,
                )

            await tx.execute(
                """
                INSERT INTO package_usages (
                    id, tenant_id, package_id, units_used, source_key, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6)
                """,
                usage_id,
                ctx.tenant_id,
                data.customer_package_id,
                data.units_used,
                self.source_key(ctx),
                now,
            )

            remaining = await tx.fetchval(
                "SELECT remaining_units FROM customer_packages WHERE id = $1",
                data.customer_package_id,
            )
            result = PackageConsumption(
                customer_package_id=as_uuid(existing["id"]),
                usage_id=usage_id,
                units_used=data.units_used,
                remaining_units=int(remaining),
            )

            await record_audit(
                tx,
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                action="package.consume",
                entity_type="customer_package",
                entity_id=str(data.customer_package_id),
                details={"unitsUsed": data.units_used, "note": data.note},
                at=now,
            )
            await txn.enqueue(
                event_type=PackageEventType.CONSUMED.value,
                payload=event_payload(result),
                tenant_id=ctx.tenant_id,
                correlation_id=ctx.correlation_id,
            )

        logger.info(
            f"Consumed {data.units_used} unit(s) from package {data.customer_package_id}, "
            f"{result.remaining_units} remaining"
        )
        return result


async def get_customer_package(db, tenant_id: str, package_id) -> CustomerPackage:
    """Load a package or raise NotFoundError."""
    row = await db.fetchrow(
        "SELECT * FROM customer_packages WHERE id = $1 AND tenant_id = $2",
        package_id,
        tenant_id,
    )
    if not row:
        raise NotFoundError("CustomerPackage", str(package_id))
    return CustomerPackage(
        id=as_uuid(row["id"]),
        tenant_id=row["tenant_id"],
        customer_party_id=row["customer_party_id"],
        name=row["name"],
        total_units=row["total_units"],
        remaining_units=row["remaining_units"],
        created_at=coerce_datetime(row["created_at"]),
        updated_at=coerce_datetime(row["updated_at"]),
    )
