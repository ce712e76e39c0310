"""
Engagement Event Taxonomy

Event naming convention: engagement.{entity}.{action}
- entity: package, loyalty
- action: past tense verb (created, consumed, earned, redeemed)
"""

from enum import Enum


class PackageEventType(str, Enum):
    """Customer package events."""
    CREATED = "engagement.package.created"
    CONSUMED = "engagement.package.consumed"


class LoyaltyEventType(str, Enum):
    """Loyalty ledger events."""
    EARNED = "engagement.loyalty.earned"
    REDEEMED = "engagement.loyalty.redeemed"


ENGAGEMENT_EVENT_TYPES = frozenset(
    [e.value for e in PackageEventType] + [e.value for e in LoyaltyEventType]
)
