"""Store model: minimal identity row for the store lookup collaborator."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base


class Store(Base):
    """Existence and display name only; profiles live in the store service."""

    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<Store(id={self.id!r}, name={self.name!r})>"
