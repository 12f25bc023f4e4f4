"""Uniform error body returned at every API boundary."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    timestamp: datetime
    status: int
    error: str
    message: str
    path: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
