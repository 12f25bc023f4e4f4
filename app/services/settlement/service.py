"""Settlement service: creation, transitions, queries and payout submission.

Each public mutation loads the record, applies the domain transition in
memory and commits through ``commit_transition`` so the version check on
the settlements table arbitrates concurrent writers (webhooks, the retry
coordinator, operators).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, settings
from app.core.errors import (
    ErrorKind,
    SettlementError,
    not_found,
    processing_error,
    status_conflict,
)
from app.core.logging import get_logger
from app.models.seller import PAYOUT_ELIGIBLE_STATUSES, Seller, SellerStatus
from app.models.settlement import MAX_RETRY_ATTEMPTS, Settlement, SettlementStatus
from app.schemas.provider import ProviderBalance
from app.schemas.retry import RetryStatistics
from app.schemas.settlement import SettlementSummary, StatusTotals
from app.services.collaborators.payout_provider import PayoutProvider
from app.services.collaborators.store_lookup import StoreLookup
from app.services.persistence import commit_transition

logger = get_logger(__name__)

_PROVIDER_FAILURE_KINDS = (ErrorKind.PROVIDER, ErrorKind.INSUFFICIENT_BALANCE)


@dataclass
class SellerFollowUpResult:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errored: list[str] = field(default_factory=list)


def parse_settlement_id(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


class SettlementService:
    """Operations on Settlement records for one database session."""

    def __init__(
        self,
        db: Session,
        store_lookup: StoreLookup,
        provider: Optional[PayoutProvider] = None,
        config: Settings = settings,
    ) -> None:
        self.db = db
        self.store_lookup = store_lookup
        self.provider = provider
        self.config = config

    # ── Creation ─────────────────────────────────────────────────────

    def create(
        self,
        store_id: str,
        order_id: str,
        amount: Any,
        fee_rate: Any = None,
    ) -> Settlement:
        """Create the settlement for an order, or return the existing one.

        Inputs are validated before the lookup; an existing record for
        ``order_id`` is returned as-is, without recomputing its fee.
        """
        rate = self.config.platform_fee_rate if fee_rate is None else fee_rate
        candidate = Settlement.build(store_id, order_id, amount, rate, self.config.amount_scale)

        existing = self.get_by_order(order_id)
        if existing is not None:
            logger.info(
                "Settlement already exists for order=%s id=%s",
                order_id,
                existing.id,
            )
            return existing

        if not self.store_lookup.exists(store_id):
            raise not_found("Store", store_id)

        seller = self._seller_for_store(store_id)
        if seller is not None:
            candidate.provider_seller_id = seller.provider_seller_id

        self.db.add(candidate)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the race on the order_id unique constraint.
            self.db.rollback()
            existing = self.get_by_order(order_id)
            if existing is None:
                raise processing_error(
                    f"Could not create settlement for order {order_id}",
                    stage="database_save",
                )
            logger.info("Concurrent create resolved to existing settlement for order=%s", order_id)
            return existing
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to create settlement for order=%s", order_id)
            raise processing_error(
                f"Could not create settlement for order {order_id}",
                stage="database_save",
            ) from exc

        logger.info(
            "Settlement created: id=%s order=%s amount=%s fee=%s payout=%s",
            candidate.id,
            order_id,
            candidate.original_amount,
            candidate.platform_fee,
            candidate.settlement_amount,
        )
        return candidate

    # ── Queries ──────────────────────────────────────────────────────

    def get(self, settlement_id: Any) -> Settlement:
        parsed = parse_settlement_id(settlement_id)
        settlement = self.db.get(Settlement, parsed) if parsed else None
        if settlement is None:
            raise not_found("Settlement", settlement_id)
        return settlement

    def get_by_order(self, order_id: str) -> Optional[Settlement]:
        return self.db.query(Settlement).filter(Settlement.order_id == order_id).first()

    def list_settlements(
        self,
        status: Optional[SettlementStatus] = None,
        store_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[Settlement]:
        query = self.db.query(Settlement)
        if status is not None:
            query = query.filter(Settlement.status == status)
        if store_id:
            query = query.filter(Settlement.store_id == store_id)

        offset = (page - 1) * limit
        return query.order_by(Settlement.created_at.desc()).offset(offset).limit(limit).all()

    def list_retryable(self, limit: Optional[int] = None) -> list[Settlement]:
        """FAILED records that still have retry attempts left."""
        query = (
            self.db.query(Settlement)
            .filter(Settlement.status == SettlementStatus.FAILED)
            .filter(Settlement.retry_count < MAX_RETRY_ATTEMPTS)
            .filter(Settlement.requires_manual_action.is_(False))
            .order_by(Settlement.updated_at.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def summary(self, store_id: Optional[str] = None) -> SettlementSummary:
        query = self.db.query(
            Settlement.status,
            func.count(Settlement.id),
            func.sum(Settlement.original_amount),
            func.sum(Settlement.platform_fee),
            func.sum(Settlement.settlement_amount),
        )
        if store_id:
            query = query.filter(Settlement.store_id == store_id)
        rows = query.group_by(Settlement.status).all()

        by_status: dict[str, StatusTotals] = {}
        total = 0
        for status, count, original, fee, payout in rows:
            by_status[status.value] = StatusTotals(
                count=count,
                original_amount=Decimal(str(original or 0)),
                platform_fee=Decimal(str(fee or 0)),
                settlement_amount=Decimal(str(payout or 0)),
            )
            total += count

        manual = self.db.query(func.count(Settlement.id)).filter(
            Settlement.requires_manual_action.is_(True)
        )
        if store_id:
            manual = manual.filter(Settlement.store_id == store_id)

        return SettlementSummary(
            store_id=store_id,
            total_count=total,
            by_status=by_status,
            manual_action_count=manual.scalar() or 0,
        )

    def retry_statistics(self, max_attempts: int = MAX_RETRY_ATTEMPTS) -> RetryStatistics:
        """Counts describing how the retry loop is doing."""
        failed = self.db.query(func.count(Settlement.id)).filter(
            Settlement.status == SettlementStatus.FAILED
        )
        retryable = failed.filter(Settlement.retry_count < max_attempts).filter(
            Settlement.requires_manual_action.is_(False)
        )
        exhausted = failed.filter(Settlement.retry_count >= max_attempts)
        manual = self.db.query(func.count(Settlement.id)).filter(
            Settlement.requires_manual_action.is_(True)
        )
        recovered = (
            self.db.query(func.count(Settlement.id))
            .filter(Settlement.status == SettlementStatus.COMPLETED)
            .filter(Settlement.retry_count > 0)
        )
        recorded_failures = self.db.query(func.sum(Settlement.retry_count))

        return RetryStatistics(
            failed_count=failed.scalar() or 0,
            retryable_count=retryable.scalar() or 0,
            exhausted_count=exhausted.scalar() or 0,
            manual_action_count=manual.scalar() or 0,
            recovered_count=recovered.scalar() or 0,
            recorded_failures=int(recorded_failures.scalar() or 0),
            max_attempts=max_attempts,
        )

    # ── Transitions ──────────────────────────────────────────────────

    def mark_processing(self, settlement_id: Any) -> Settlement:
        settlement = self.get(settlement_id)
        settlement.mark_processing()
        return commit_transition(self.db, settlement, "start processing", SettlementStatus.PROCESSING)

    def complete(self, settlement_id: Any, provider_payout_id: str) -> Settlement:
        settlement = self.get(settlement_id)
        settlement.complete(provider_payout_id)
        commit_transition(self.db, settlement, "complete", SettlementStatus.COMPLETED)
        logger.info("Settlement completed: id=%s payout=%s", settlement.id, provider_payout_id)
        return settlement

    def fail(self, settlement_id: Any, message: str, retryable: bool = True) -> Settlement:
        settlement = self.get(settlement_id)
        settlement.fail(message, retryable=retryable)
        commit_transition(self.db, settlement, "fail", SettlementStatus.FAILED)
        logger.warning(
            "Settlement failed: id=%s retry_count=%d manual=%s message=%s",
            settlement.id,
            settlement.retry_count,
            settlement.requires_manual_action,
            message,
        )
        return settlement

    def cancel(self, settlement_id: Any) -> Settlement:
        settlement = self.get(settlement_id)
        settlement.cancel()
        commit_transition(self.db, settlement, "cancel", SettlementStatus.CANCELLED)
        logger.info("Settlement cancelled: id=%s", settlement.id)
        return settlement

    # ── Payout submission ────────────────────────────────────────────

    def submit_payout(self, settlement_id: Any) -> Settlement:
        """Submit a PENDING settlement to the provider.

        A provider failure is recorded on the settlement and then re-raised
        so the caller sees the classified error.
        """
        settlement = self.get(settlement_id)
        destination = self.payout_destination(settlement)
        self._require_provider(settlement.id)

        settlement.mark_processing()
        settlement.provider_seller_id = destination
        commit_transition(self.db, settlement, "start processing")

        error = self.dispatch_payout(settlement, destination)
        if error is not None:
            raise error
        return settlement

    def payout_destination(self, settlement: Settlement) -> str:
        """Provider seller id for the settlement's store, if it can be paid."""
        seller = self._seller_for_store(settlement.store_id)
        if seller is None:
            raise status_conflict(settlement.id, "SELLER_NOT_REGISTERED", "request payout")
        if not seller.can_process_payout():
            raise status_conflict(
                settlement.id,
                f"SELLER_{seller.status.value}" if seller.provider_seller_id else "SELLER_WITHOUT_PROVIDER_ID",
                "request payout",
            )
        return seller.provider_seller_id

    def dispatch_payout(self, settlement: Settlement, destination: str) -> Optional[SettlementError]:
        """Call the provider for a PROCESSING settlement and record the result.

        Returns the error that was recorded, or None on success.  Anything the
        provider raises other than a classified provider failure is recorded
        as a retryable processing failure, so the record never stays in
        PROCESSING because of an unexpected exception.
        """
        self._require_provider(settlement.id)

        logger.info(
            "Requesting payout: settlement=%s amount=%s key=%s",
            settlement.id,
            settlement.settlement_amount,
            settlement.idempotency_key,
        )
        try:
            payout_id = self.provider.request_payout(
                destination,
                settlement.settlement_amount,
                settlement.idempotency_key,
            )
        except SettlementError as exc:
            error = exc if exc.kind in _PROVIDER_FAILURE_KINDS else _unexpected_failure(settlement, exc)
        except Exception as exc:
            logger.exception("Unexpected error from payout provider: settlement=%s", settlement.id)
            error = _unexpected_failure(settlement, exc)
        else:
            settlement.complete(payout_id)
            commit_transition(self.db, settlement, "complete", SettlementStatus.COMPLETED)
            logger.info("Payout completed: settlement=%s payout=%s", settlement.id, payout_id)
            return None

        settlement.fail(_failure_message(error), retryable=error.retryable)
        commit_transition(self.db, settlement, "fail", SettlementStatus.FAILED)
        if error.retryable:
            logger.warning(
                "Payout attempt failed (retryable): settlement=%s retry_count=%d error=%s",
                settlement.id,
                settlement.retry_count,
                error.message,
            )
        else:
            logger.error(
                "Payout failed, manual action required: settlement=%s kind=%s error=%s",
                settlement.id,
                error.kind.value,
                error.message,
            )
        return error

    def cancel_payout(self, settlement_id: Any) -> Settlement:
        """Cancel an in-flight payout at the provider, then the settlement."""
        settlement = self.get(settlement_id)
        if settlement.status is not SettlementStatus.PROCESSING or not settlement.provider_payout_id:
            raise status_conflict(
                settlement.id,
                settlement.status.value if settlement.provider_payout_id else "NO_PROVIDER_PAYOUT",
                "cancel payout",
            )
        self._require_provider(settlement.id)

        self.provider.cancel_payout(settlement.provider_payout_id)
        settlement.cancel(by_provider=True)
        commit_transition(self.db, settlement, "cancel payout", SettlementStatus.CANCELLED)
        logger.info(
            "Payout cancelled: settlement=%s payout=%s",
            settlement.id,
            settlement.provider_payout_id,
        )
        return settlement

    def provider_balance(self) -> ProviderBalance:
        self._require_provider()
        return self.provider.get_balance()

    # ── Seller status follow-up ──────────────────────────────────────

    def handle_seller_status_change(
        self,
        store_id: str,
        previous: SellerStatus,
        current: SellerStatus,
    ) -> SellerFollowUpResult:
        """React to a committed seller status change.

        Becoming payout-eligible submits the store's PENDING settlements;
        rejection or suspension fails them for an operator to resolve.
        Errors are logged per record and never propagate to the caller.
        """
        result = SellerFollowUpResult()
        try:
            if current in PAYOUT_ELIGIBLE_STATUSES and previous not in PAYOUT_ELIGIBLE_STATUSES:
                self._submit_pending(store_id, result)
            elif current in (SellerStatus.REJECTED, SellerStatus.SUSPENDED):
                self._fail_pending(store_id, f"seller {current.value.lower()}, payout cannot be processed", result)
        except Exception:
            self.db.rollback()
            logger.exception("Seller status follow-up failed: store=%s", store_id)
        return result

    def _pending_for_store(self, store_id: str) -> list[Settlement]:
        return (
            self.db.query(Settlement)
            .filter(Settlement.store_id == store_id)
            .filter(Settlement.status == SettlementStatus.PENDING)
            .order_by(Settlement.created_at.asc())
            .all()
        )

    def _submit_pending(self, store_id: str, result: SellerFollowUpResult) -> None:
        if self.provider is None:
            logger.warning("No payout provider configured, pending settlements left for store=%s", store_id)
            return
        pending = self._pending_for_store(store_id)
        logger.info("Submitting pending settlements: store=%s count=%d", store_id, len(pending))
        for settlement in pending:
            settlement_id = str(settlement.id)
            try:
                self.submit_payout(settlement.id)
            except SettlementError as exc:
                self.db.rollback()
                logger.warning("Pending settlement not paid: settlement=%s error=%s", settlement_id, exc.message)
                result.failed.append(settlement_id)
            except Exception:
                self.db.rollback()
                logger.exception("Pending settlement submission errored: settlement=%s", settlement_id)
                result.errored.append(settlement_id)
            else:
                result.completed.append(settlement_id)

    def _fail_pending(self, store_id: str, message: str, result: SellerFollowUpResult) -> None:
        pending = self._pending_for_store(store_id)
        logger.info("Failing pending settlements: store=%s count=%d", store_id, len(pending))
        for settlement in pending:
            settlement_id = str(settlement.id)
            try:
                self.fail(settlement.id, message, retryable=False)
            except Exception:
                self.db.rollback()
                logger.exception("Could not fail pending settlement=%s", settlement_id)
                result.errored.append(settlement_id)
            else:
                result.failed.append(settlement_id)

    def _require_provider(self, entity_id: Any = None) -> None:
        if self.provider is None:
            raise processing_error(
                "No payout provider configured",
                stage="external_api_call",
                entity_id=entity_id,
                retryable=False,
            )

    def _seller_for_store(self, store_id: str) -> Optional[Seller]:
        return self.db.query(Seller).filter(Seller.store_id == store_id).first()


def _failure_message(error: SettlementError) -> str:
    if error.kind is ErrorKind.INSUFFICIENT_BALANCE:
        parts = [f"INSUFFICIENT_BALANCE: {error.message}"]
        if error.requested_amount is not None and error.available_amount is not None:
            parts.append(f"(requested {error.requested_amount}, available {error.available_amount})")
        return " ".join(parts)
    if error.kind is ErrorKind.PROCESSING:
        return f"PROCESSING_ERROR: {error.message}"
    return f"{error.provider_code or 'PROVIDER_ERROR'}: {error.message}"


def _unexpected_failure(settlement: Settlement, exc: Exception) -> SettlementError:
    message = exc.message if isinstance(exc, SettlementError) else str(exc) or type(exc).__name__
    return processing_error(
        f"Unexpected payout provider failure: {message}",
        stage="external_api_call",
        entity_id=settlement.id,
    )
