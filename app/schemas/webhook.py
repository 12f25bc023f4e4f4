"""Inbound provider webhook envelope."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PAYOUT_CHANGED = "payout.changed"
SELLER_CHANGED = "seller.changed"


class WebhookEvent(BaseModel):
    """``{eventId, eventType, timestamp, data}`` as sent by the provider.

    ``timestamp`` accepts epoch seconds or an ISO-8601 string.
    """

    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., alias="eventId", min_length=1, max_length=255)
    event_type: str = Field(..., alias="eventType", min_length=1, max_length=100)
    timestamp: datetime
    data: dict[str, Any]

    @field_validator("event_id", "event_type")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("data")
    @classmethod
    def _data_not_empty(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not value:
            raise ValueError("must not be empty")
        return value

    def get_str(self, key: str) -> Optional[str]:
        value = self.data.get(key)
        return str(value) if value is not None else None

    @property
    def is_payout_event(self) -> bool:
        return self.event_type == PAYOUT_CHANGED

    @property
    def is_seller_event(self) -> bool:
        return self.event_type == SELLER_CHANGED

    def summary(self) -> str:
        return (
            f"WebhookEvent[id={self.event_id}, type={self.event_type}, "
            f"timestamp={self.timestamp.isoformat()}, dataKeys={sorted(self.data)}]"
        )
