"""Processed webhook events: the durable dedup set."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base


class ProcessedWebhookEvent(Base):
    """One row per provider event id that has been consumed.

    The primary key on ``event_id`` is what makes concurrent deliveries of
    the same event lose to whichever transaction commits first.
    """

    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    outcome: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="applied | rejected",
    )
    reason: Mapped[Optional[str]] = mapped_column(
        String(100),
    )
    payload: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )
    event_timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    processed_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessedWebhookEvent(event_id={self.event_id!r}, "
            f"event_type={self.event_type!r}, outcome={self.outcome!r})>"
        )
