"""
Engagement Models

Inputs and results of the package and loyalty use cases. Fields accept either
snake_case names or their camelCase aliases (customerPartyId, unitsUsed, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class EngagementModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def parse_input(model: Type[ModelT], data: Any) -> ModelT:
    """Validate raw input, surfacing failures as a VALIDATION_ERROR."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        details = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid input", details=details) from None


# =============================================================================
# Packages
# =============================================================================

class CreatePackageInput(EngagementModel):
    customer_party_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    total_units: int = Field(..., gt=0)


class ConsumePackageInput(EngagementModel):
    customer_package_id: UUID
    units_used: int = Field(..., gt=0)
    note: Optional[str] = Field(None, max_length=500)


class CustomerPackage(EngagementModel):
    id: UUID
    tenant_id: str
    customer_party_id: str
    name: str
    total_units: int
    remaining_units: int
    created_at: datetime
    updated_at: datetime


class PackageConsumption(EngagementModel):
    customer_package_id: UUID
    usage_id: UUID
    units_used: int
    remaining_units: int


# =============================================================================
# Loyalty
# =============================================================================

class LoyaltyEntryType(str, Enum):
    EARN = "EARN"
    REDEEM = "REDEEM"


class LoyaltyPointsInput(EngagementModel):
    customer_party_id: str = Field(..., min_length=1)
    points_delta: int = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=500)


class LoyaltySummaryInput(EngagementModel):
    customer_party_id: str = Field(..., min_length=1)
    limit: int = Field(20, ge=1, le=100)


class LoyaltyLedgerEntry(EngagementModel):
    id: UUID
    entry_type: LoyaltyEntryType
    points_delta: int
    reason: Optional[str] = None
    created_at: datetime


class LoyaltyTransaction(EngagementModel):
    account_id: UUID
    entry: LoyaltyLedgerEntry
    current_points_balance: int


class LoyaltySummary(EngagementModel):
    customer_party_id: str
    account_id: Optional[UUID] = None
    current_points_balance: int = 0
    recent_entries: List[LoyaltyLedgerEntry] = Field(default_factory=list)


def event_payload(model: BaseModel) -> Dict[str, Any]:
    """camelCase JSON-ready dict for an outbox payload."""
    return model.model_dump(mode="json", by_alias=True)
