"""Pydantic schemas for seller onboarding."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.seller import BusinessType, SellerStatus


class SellerRegister(BaseModel):
    store_id: str = Field(..., max_length=100)
    business_type: BusinessType


class SellerStatusUpdate(BaseModel):
    status: SellerStatus


class ProviderRegistration(BaseModel):
    """Details forwarded verbatim to the payout provider."""

    details: dict[str, Any] = Field(default_factory=dict)


class SellerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: str
    ref_seller_id: str
    provider_seller_id: Optional[str] = None
    business_type: BusinessType
    status: SellerStatus
    payout_eligible: bool = False
    registered_at: datetime
    approved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_seller(cls, seller: Any) -> SellerResponse:
        response = cls.model_validate(seller)
        response.payout_eligible = seller.can_process_payout()
        return response
