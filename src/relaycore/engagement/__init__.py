"""
Engagement

Customer packages and loyalty points, written through the transactional
outbox and run with idempotent replay.

Usage:
    executor = UseCaseExecutor(IdempotencyStore(db))
    redeem = RedeemLoyaltyPoints(db, OutboxStore(db))

    ctx = UseCaseContext(tenant_id="t1", user_id="u1", idempotency_key="redeem-42")
    result = await executor.execute(redeem, {"customerPartyId": "c1", "pointsDelta": 10}, ctx)
"""

from .events import ENGAGEMENT_EVENT_TYPES, LoyaltyEventType, PackageEventType
from .loyalty import EarnLoyaltyPoints, GetLoyaltySummary, RedeemLoyaltyPoints
from .models import (
    ConsumePackageInput,
    CreatePackageInput,
    CustomerPackage,
    LoyaltyEntryType,
    LoyaltyLedgerEntry,
    LoyaltyPointsInput,
    LoyaltySummary,
    LoyaltySummaryInput,
    LoyaltyTransaction,
    PackageConsumption,
)
from .packages import ConsumeCustomerPackage, CreateCustomerPackage, get_customer_package

__all__ = [
    "ENGAGEMENT_EVENT_TYPES",
    "LoyaltyEventType",
    "PackageEventType",
    "EarnLoyaltyPoints",
    "GetLoyaltySummary",
    "RedeemLoyaltyPoints",
    "ConsumePackageInput",
    "CreatePackageInput",
    "CustomerPackage",
    "LoyaltyEntryType",
    "LoyaltyLedgerEntry",
    "LoyaltyPointsInput",
    "LoyaltySummary",
    "LoyaltySummaryInput",
    "LoyaltyTransaction",
    "PackageConsumption",
    "ConsumeCustomerPackage",
    "CreateCustomerPackage",
    "get_customer_package",
]
