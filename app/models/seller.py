"""Seller onboarding model: one provider registration per store."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base
from app.core.errors import status_conflict, validation_error


class SellerStatus(str, enum.Enum):
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    KYC_REQUIRED = "KYC_REQUIRED"
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class BusinessType(str, enum.Enum):
    INDIVIDUAL_BUSINESS = "INDIVIDUAL_BUSINESS"
    CORPORATE = "CORPORATE"

    @property
    def requires_kyc(self) -> bool:
        return self is BusinessType.CORPORATE

    @property
    def supports_partial_approval(self) -> bool:
        return self is BusinessType.INDIVIDUAL_BUSINESS


PAYOUT_ELIGIBLE_STATUSES = frozenset({SellerStatus.APPROVED, SellerStatus.PARTIALLY_APPROVED})
PENDING_STATUSES = frozenset({SellerStatus.APPROVAL_REQUIRED, SellerStatus.KYC_REQUIRED})

# REJECTED/SUSPENDED are reachable from every state except APPROVED, and may
# go back to APPROVAL_REQUIRED when onboarding is re-attempted.
ALLOWED_TRANSITIONS: dict[SellerStatus, frozenset[SellerStatus]] = {
    SellerStatus.APPROVAL_REQUIRED: frozenset(
        {
            SellerStatus.KYC_REQUIRED,
            SellerStatus.PARTIALLY_APPROVED,
            SellerStatus.APPROVED,
            SellerStatus.REJECTED,
            SellerStatus.SUSPENDED,
        }
    ),
    SellerStatus.KYC_REQUIRED: frozenset(
        {
            SellerStatus.PARTIALLY_APPROVED,
            SellerStatus.APPROVED,
            SellerStatus.REJECTED,
            SellerStatus.SUSPENDED,
        }
    ),
    SellerStatus.PARTIALLY_APPROVED: frozenset(
        {
            SellerStatus.KYC_REQUIRED,
            SellerStatus.APPROVED,
            SellerStatus.REJECTED,
            SellerStatus.SUSPENDED,
        }
    ),
    SellerStatus.APPROVED: frozenset(),
    SellerStatus.REJECTED: frozenset({SellerStatus.APPROVAL_REQUIRED}),
    SellerStatus.SUSPENDED: frozenset({SellerStatus.APPROVAL_REQUIRED}),
}


class Seller(Base):
    """A store's registration and approval state with the payout provider.

    ``ref_seller_id`` is the store id and doubles as the idempotency
    reference the provider echoes back in seller webhooks.
    """

    __tablename__ = "sellers"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    store_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )
    ref_seller_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )
    provider_seller_id: Mapped[Optional[str]] = mapped_column(
        String(100),
    )
    business_type: Mapped[BusinessType] = mapped_column(
        Enum(BusinessType, native_enum=False, length=30),
        nullable=False,
    )
    status: Mapped[SellerStatus] = mapped_column(
        Enum(SellerStatus, native_enum=False, length=30),
        nullable=False,
        default=SellerStatus.APPROVAL_REQUIRED,
    )
    registered_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    # Provider timestamp of the newest webhook event applied to this record.
    last_event_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_seller_status", "status"),
        Index("ix_seller_provider_id", "provider_seller_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def build(cls, store_id: str, business_type: BusinessType) -> Seller:
        if not store_id or not str(store_id).strip():
            raise validation_error("store_id is required", field_errors={"store_id": ["is required"]})
        if business_type is None:
            raise validation_error(
                "business_type is required",
                field_errors={"business_type": ["is required"]},
            )
        now = utcnow()
        return cls(
            id=uuid.uuid4(),
            store_id=store_id,
            ref_seller_id=store_id,
            business_type=BusinessType(business_type),
            status=SellerStatus.APPROVAL_REQUIRED,
            registered_at=now,
            created_at=now,
        )

    def assign_provider_id(self, provider_seller_id: str) -> bool:
        """Set the provider's seller id once.

        Returns False when the same id is already assigned; a different id
        is a conflict.
        """
        if not provider_seller_id or not provider_seller_id.strip():
            raise validation_error(
                "provider_seller_id is required",
                field_errors={"provider_seller_id": ["is required"]},
            )
        if self.provider_seller_id == provider_seller_id:
            return False
        if self.provider_seller_id is not None:
            raise status_conflict(
                self.id,
                f"assigned to {self.provider_seller_id}",
                f"assign provider id {provider_seller_id}",
            )
        self.provider_seller_id = provider_seller_id
        self._touch()
        return True

    def update_status(self, new_status: SellerStatus) -> bool:
        """Apply a validated status transition. Returns False on a no-op."""
        new_status = SellerStatus(new_status)
        if new_status is self.status:
            return False
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise status_conflict(self.id, self.status.value, f"move to {new_status.value}")
        self.status = new_status
        now = self._touch()
        if new_status is SellerStatus.APPROVED and self.approved_at is None:
            self.approved_at = now
        return True

    def can_process_payout(self) -> bool:
        return bool(self.provider_seller_id) and self.status in PAYOUT_ELIGIBLE_STATUSES

    def is_pending_approval(self) -> bool:
        return self.status in PENDING_STATUSES

    @property
    def is_registered(self) -> bool:
        return bool(self.provider_seller_id)

    def _touch(self) -> datetime:
        now = utcnow()
        self.updated_at = now
        return now

    def __repr__(self) -> str:
        return (
            f"<Seller(store_id={self.store_id!r}, status={self.status!r}, "
            f"provider_seller_id={self.provider_seller_id!r})>"
        )
