"""Schemas for data read back from the payout provider."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ProviderBalance(BaseModel):
    """Funds held at the provider for outgoing payouts."""

    model_config = ConfigDict(populate_by_name=True)

    available_amount: Decimal = Field(..., alias="availableAmount")
    pending_amount: Decimal = Field(..., alias="pendingAmount")
    last_updated_at: Optional[datetime] = Field(None, alias="lastUpdatedAt")

    @computed_field(alias="totalAmount")
    @property
    def total_amount(self) -> Decimal:
        return self.available_amount + self.pending_amount
