"""Settlement model: one fee/payout record per completed order."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base
from app.core.errors import status_conflict, validation_error

MAX_RETRY_ATTEMPTS = 3
MINOR_UNIT = Decimal("0.01")
MANUAL_ACTION_PREFIX = "[manual action required] "


class SettlementStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (SettlementStatus.COMPLETED, SettlementStatus.CANCELLED)


def compute_fees(
    amount: Decimal,
    fee_rate: Decimal,
    minor_unit: Decimal = MINOR_UNIT,
) -> tuple[Decimal, Decimal]:
    """Split an order amount into (platform_fee, settlement_amount).

    The fee is rounded half-up to the minor unit and the settlement amount
    is the exact remainder, so the two always add back to ``amount``.
    """
    platform_fee = (amount * fee_rate).quantize(minor_unit, rounding=ROUND_HALF_UP)
    return platform_fee, amount - platform_fee


RATE_SCALE = Decimal("0.0001")
# Numeric(19, 2) holds 17 integer digits.
MAX_AMOUNT = Decimal("1e17")


def _places(unit: Decimal) -> int:
    return -unit.as_tuple().exponent


def _too_precise(value: Decimal, unit: Decimal) -> bool:
    return value.normalize().as_tuple().exponent < unit.as_tuple().exponent


def validate_amounts(
    amount: Any,
    fee_rate: Any,
    minor_unit: Decimal = MINOR_UNIT,
) -> tuple[Decimal, Decimal]:
    """Coerce and check creation inputs, raising a VALIDATION error.

    Values carrying more precision than the stored columns are rejected
    rather than rounded, so the stored fee split always adds up.
    """
    field_errors: dict[str, list[str]] = {}
    parsed: dict[str, Optional[Decimal]] = {"amount": None, "fee_rate": None}

    for name, raw in (("amount", amount), ("fee_rate", fee_rate)):
        if isinstance(raw, float):
            field_errors.setdefault(name, []).append("must be a decimal, not a float")
            continue
        try:
            parsed[name] = Decimal(str(raw))
        except (ArithmeticError, ValueError, TypeError):
            field_errors.setdefault(name, []).append("must be a decimal number")
            continue
        if not parsed[name].is_finite():
            field_errors.setdefault(name, []).append("must be finite")
            parsed[name] = None

    amount_value, rate_value = parsed["amount"], parsed["fee_rate"]
    if amount_value is not None:
        if amount_value <= 0:
            field_errors.setdefault("amount", []).append("must be greater than 0")
        elif amount_value >= MAX_AMOUNT:
            field_errors.setdefault("amount", []).append("exceeds the maximum supported amount")
        if _too_precise(amount_value, minor_unit):
            field_errors.setdefault("amount", []).append(
                f"must have at most {_places(minor_unit)} decimal places"
            )
    if rate_value is not None:
        if not (0 <= rate_value <= 1):
            field_errors.setdefault("fee_rate", []).append("must be between 0 and 1")
        if _too_precise(rate_value, RATE_SCALE):
            field_errors.setdefault("fee_rate", []).append(
                f"must have at most {_places(RATE_SCALE)} decimal places"
            )

    if field_errors:
        raise validation_error("Invalid settlement amounts", field_errors=field_errors)
    return amount_value.quantize(minor_unit), rate_value.quantize(RATE_SCALE)


class Settlement(Base):
    """Platform fee and merchant payout owed for a single order.

    Derived amounts are fixed at creation; afterwards the record only moves
    through the status transitions below.  ``version`` is bumped on every
    flush, so two sessions racing on the same prior state cannot both win.
    """

    __tablename__ = "settlements"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    store_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    order_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )
    original_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 2),
        nullable=False,
    )
    platform_fee_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4),
        nullable=False,
    )
    platform_fee: Mapped[Decimal] = mapped_column(
        Numeric(19, 2),
        nullable=False,
    )
    settlement_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 2),
        nullable=False,
    )
    status: Mapped[SettlementStatus] = mapped_column(
        Enum(SettlementStatus, native_enum=False, length=20),
        nullable=False,
        default=SettlementStatus.PENDING,
    )
    provider_payout_id: Mapped[Optional[str]] = mapped_column(
        String(100),
    )
    provider_seller_id: Mapped[Optional[str]] = mapped_column(
        String(100),
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    requires_manual_action: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    metadata_json: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
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
        Index("ix_settlement_store_id", "store_id"),
        Index("ix_settlement_status_retry", "status", "retry_count"),
        Index("ix_settlement_store_created", "store_id", "created_at"),
    )
    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def build(
        cls,
        store_id: str,
        order_id: str,
        amount: Any,
        fee_rate: Any,
        minor_unit: Decimal = MINOR_UNIT,
    ) -> Settlement:
        """Validate inputs and compute the fee split for a new record."""
        if not store_id or not str(store_id).strip():
            raise validation_error("store_id is required", field_errors={"store_id": ["is required"]})
        if not order_id or not str(order_id).strip():
            raise validation_error("order_id is required", field_errors={"order_id": ["is required"]})

        original_amount, rate = validate_amounts(amount, fee_rate, minor_unit)
        platform_fee, settlement_amount = compute_fees(original_amount, rate, minor_unit)
        now = utcnow()
        return cls(
            id=uuid.uuid4(),
            store_id=store_id,
            order_id=order_id,
            original_amount=original_amount,
            platform_fee_rate=rate,
            platform_fee=platform_fee,
            settlement_amount=settlement_amount,
            status=SettlementStatus.PENDING,
            retry_count=0,
            requires_manual_action=False,
            requested_at=now,
            created_at=now,
        )

    # ── Transitions ──────────────────────────────────────────────────

    def mark_processing(self) -> None:
        """PENDING -> PROCESSING."""
        if self.status is not SettlementStatus.PENDING:
            raise status_conflict(self.id, self.status.value, "start processing")
        self.status = SettlementStatus.PROCESSING
        self.requested_at = self._touch()

    def retry(self, max_attempts: int = MAX_RETRY_ATTEMPTS) -> None:
        """Claim a retry-eligible FAILED record for resubmission."""
        if not self.can_retry(max_attempts):
            raise status_conflict(self.id, self.status.value, "retry")
        self.status = SettlementStatus.PROCESSING
        self.requested_at = self._touch()

    def complete(self, provider_payout_id: str) -> None:
        """Record a successful payout. Allowed from any non-terminal state."""
        if not provider_payout_id or not provider_payout_id.strip():
            raise validation_error(
                "provider_payout_id is required",
                field_errors={"provider_payout_id": ["is required"]},
            )
        if self.status.is_terminal:
            raise status_conflict(self.id, self.status.value, "complete")
        self.provider_payout_id = provider_payout_id
        self.status = SettlementStatus.COMPLETED
        self.error_message = None
        self.requires_manual_action = False
        self.completed_at = self._touch()

    def fail(self, message: str, retryable: bool = True) -> None:
        """Move to FAILED and count the attempt.

        ``retry_count`` saturates at MAX_RETRY_ATTEMPTS.  A non-retryable
        failure flags the record for an operator instead of the retry loop.
        """
        if not message or not message.strip():
            raise validation_error(
                "error message is required",
                field_errors={"message": ["is required"]},
            )
        if self.status.is_terminal:
            raise status_conflict(self.id, self.status.value, "fail")
        self.status = SettlementStatus.FAILED
        self.retry_count = min((self.retry_count or 0) + 1, MAX_RETRY_ATTEMPTS)
        if retryable:
            self.error_message = message
        else:
            self.requires_manual_action = True
            self.error_message = MANUAL_ACTION_PREFIX + message
        self.completed_at = None
        self._touch()

    def cancel(self, by_provider: bool = False) -> None:
        """Cancel the settlement.

        Operators may cancel only PENDING or FAILED records; a provider
        cancellation is reflected from any non-terminal state.
        """
        allowed = (SettlementStatus.PENDING, SettlementStatus.FAILED)
        if by_provider:
            allowed = allowed + (SettlementStatus.PROCESSING,)
        if self.status not in allowed:
            raise status_conflict(self.id, self.status.value, "cancel")
        self.status = SettlementStatus.CANCELLED
        self.completed_at = None
        self._touch()

    # ── Predicates ───────────────────────────────────────────────────

    def can_retry(self, max_attempts: int = MAX_RETRY_ATTEMPTS) -> bool:
        return (
            self.status is SettlementStatus.FAILED
            and self.retry_count < max_attempts
            and not self.requires_manual_action
        )

    @property
    def is_completed(self) -> bool:
        return self.status is SettlementStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status is SettlementStatus.FAILED

    @property
    def idempotency_key(self) -> str:
        """Provider-facing key; stable across every attempt for this record."""
        return f"settlement-{self.id}"

    def _touch(self) -> datetime:
        now = utcnow()
        self.updated_at = now
        return now

    def __repr__(self) -> str:
        return (
            f"<Settlement(order_id={self.order_id!r}, "
            f"settlement_amount={self.settlement_amount}, status={self.status!r})>"
        )
