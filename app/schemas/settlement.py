"""Pydantic schemas for settlement requests and responses."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.settlement import SettlementStatus


class SettlementCreate(BaseModel):
    """Request body sent by the order-completion collaborator."""

    store_id: str = Field(..., max_length=100)
    order_id: str = Field(
        ...,
        max_length=100,
        description="Unique per order; repeated requests return the existing record",
    )
    amount: Decimal = Field(
        ...,
        max_digits=19,
        decimal_places=2,
    )
    fee_rate: Optional[Decimal] = Field(
        None,
        max_digits=5,
        decimal_places=4,
        description="Platform fee fraction; defaults to the configured rate",
    )


class SettlementResponse(BaseModel):
    """Schema returned when reading a settlement."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: str
    order_id: str
    original_amount: Decimal
    platform_fee_rate: Decimal
    platform_fee: Decimal
    settlement_amount: Decimal
    status: SettlementStatus
    provider_payout_id: Optional[str] = None
    provider_seller_id: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int
    requires_manual_action: bool = False
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="metadata_json")
    requested_at: datetime
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class StatusTotals(BaseModel):
    count: int = 0
    original_amount: Decimal = Decimal("0")
    platform_fee: Decimal = Decimal("0")
    settlement_amount: Decimal = Decimal("0")


class SettlementSummary(BaseModel):
    """Counts and amount totals per status."""

    store_id: Optional[str] = None
    total_count: int = 0
    by_status: dict[str, StatusTotals] = Field(default_factory=dict)
    manual_action_count: int = Field(
        0,
        description="FAILED records waiting for an operator",
    )
