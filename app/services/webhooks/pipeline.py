"""Webhook ingestion pipeline.

Turns a raw provider delivery into exactly one of APPLIED, DUPLICATE or
REJECTED:

  1. Verify the HMAC signature over the raw body.
  2. Parse the envelope and check the event type matches the endpoint.
  3. Answer DUPLICATE for an event id that was already consumed, however
     old its timestamp.
  4. Reject timestamps outside the replay tolerance window.
  5. Insert the event id into the dedup set *before* touching any record,
     so a concurrent delivery of the same id loses on the primary key.
  6. Dispatch to the payout or seller handler, which refuses stale events
     (older than the provider timestamp of the last event applied to the
     record) instead of regressing state.
  7. Commit the dedup row and the record change together.

If the commit fails for any reason other than the dedup key, everything is
rolled back and a retryable PROCESSING error is raised: the event stays
unconsumed and a redelivery can apply it.

A committed seller status change is followed up on the store's PENDING
settlements; that step logs its own failures and never changes the result.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import as_naive_utc, utcnow
from app.core.config import Settings, settings
from app.core.errors import ErrorKind, SettlementError, processing_error
from app.core.logging import get_logger
from app.models.seller import Seller, SellerStatus
from app.models.settlement import Settlement, SettlementStatus
from app.models.webhook_event import ProcessedWebhookEvent
from app.schemas.webhook import WebhookEvent
from app.services.collaborators.payout_provider import PayoutProvider
from app.services.collaborators.store_lookup import SqlStoreLookup
from app.services.settlement.service import SettlementService, parse_settlement_id
from app.services.webhooks.signature import verify_signature

logger = get_logger(__name__)


class WebhookOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class RejectReason:
    INVALID_SIGNATURE = "invalid signature"
    MALFORMED = "malformed event"
    TIMESTAMP = "timestamp outside tolerance"
    TYPE_MISMATCH = "type mismatch"
    UNSUPPORTED_STATUS = "unsupported status"
    UNKNOWN_TARGET = "unknown target"
    ID_MISMATCH = "provider id mismatch"
    STALE = "stale event"
    STATUS_CONFLICT = "status conflict"


# Rejections that can never succeed on redelivery; the event id is consumed.
FINAL_REJECTIONS = frozenset(
    {RejectReason.ID_MISMATCH, RejectReason.STALE, RejectReason.STATUS_CONFLICT}
)

IN_FLIGHT_PAYOUT_STATUSES = frozenset({"REQUESTED", "PROCESSING", "IN_PROGRESS"})


@dataclass
class SellerStatusChange:
    store_id: str
    previous: SellerStatus
    current: SellerStatus


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    event_id: Optional[str] = None
    reason: Optional[str] = None
    changed: bool = False
    seller_change: Optional[SellerStatusChange] = None

    @classmethod
    def applied(cls, event_id: str, changed: bool = True) -> WebhookResult:
        return cls(WebhookOutcome.APPLIED, event_id, changed=changed)

    @classmethod
    def duplicate(cls, event_id: str) -> WebhookResult:
        return cls(WebhookOutcome.DUPLICATE, event_id)

    @classmethod
    def rejected(cls, reason: str, event_id: Optional[str] = None) -> WebhookResult:
        return cls(WebhookOutcome.REJECTED, event_id, reason=reason)


class WebhookPipeline:
    """Validates, deduplicates and applies provider webhook events."""

    def __init__(
        self,
        db: Session,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
        provider: Optional[PayoutProvider] = None,
    ) -> None:
        self.db = db
        self.config = config
        self.clock = clock
        self.provider = provider

    def handle(
        self,
        raw_body: bytes,
        signature: Optional[str],
        expected_type: str,
    ) -> WebhookResult:
        if self.config.webhook_signature_verification_enabled and not verify_signature(
            self.config.webhook_secret, raw_body, signature
        ):
            logger.warning("Webhook signature verification failed: expected_type=%s", expected_type)
            return WebhookResult.rejected(RejectReason.INVALID_SIGNATURE)

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except ValidationError as exc:
            logger.warning("Malformed webhook body: %d validation errors", exc.error_count())
            return WebhookResult.rejected(RejectReason.MALFORMED)

        logger.info("Webhook received: %s", event.summary())

        if event.event_type != expected_type:
            logger.warning(
                "Webhook type mismatch: event=%s type=%s expected=%s",
                event.event_id,
                event.event_type,
                expected_type,
            )
            return WebhookResult.rejected(RejectReason.TYPE_MISMATCH, event.event_id)

        if self._already_processed(event.event_id):
            logger.info("Duplicate webhook ignored: event=%s", event.event_id)
            return WebhookResult.duplicate(event.event_id)

        event_time = as_naive_utc(event.timestamp)
        drift = abs((self.clock() - event_time).total_seconds())
        if drift > self.config.webhook_timestamp_tolerance_seconds:
            logger.warning(
                "Webhook timestamp outside tolerance: event=%s drift=%.0fs tolerance=%ds",
                event.event_id,
                drift,
                self.config.webhook_timestamp_tolerance_seconds,
            )
            return WebhookResult.rejected(RejectReason.TIMESTAMP, event.event_id)

        return self._consume(event, event_time)

    # ── Dedup + apply ────────────────────────────────────────────────

    def _already_processed(self, event_id: str) -> bool:
        return self.db.get(ProcessedWebhookEvent, event_id) is not None

    def _consume(self, event: WebhookEvent, event_time: datetime) -> WebhookResult:
        marker = ProcessedWebhookEvent(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=WebhookOutcome.APPLIED.value,
            payload=event.model_dump(mode="json", by_alias=True),
            event_timestamp=event_time,
            processed_at=self.clock(),
        )
        self.db.add(marker)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("Duplicate webhook lost dedup race: event=%s", event.event_id)
            return WebhookResult.duplicate(event.event_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to record webhook event=%s", event.event_id)
            raise processing_error(
                f"Failed to record webhook event {event.event_id}",
                stage="database_save",
            ) from exc

        if event.is_payout_event:
            result = self._apply_payout(event, event_time)
        else:
            result = self._apply_seller(event, event_time)

        if result.outcome is WebhookOutcome.REJECTED and result.reason not in FINAL_REJECTIONS:
            # Not consumed: a later delivery may find the record / data it needs.
            self.db.rollback()
            logger.warning("Webhook rejected: event=%s reason=%s", event.event_id, result.reason)
            return result

        if result.outcome is WebhookOutcome.REJECTED:
            marker.outcome = WebhookOutcome.REJECTED.value
            marker.reason = result.reason

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Duplicate webhook lost dedup race at commit: event=%s", event.event_id)
            return WebhookResult.duplicate(event.event_id)
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("Concurrent update while applying webhook event=%s", event.event_id)
            raise processing_error(
                f"Concurrent update while applying webhook event {event.event_id}",
                stage="database_save",
            ) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to apply webhook event=%s", event.event_id)
            raise processing_error(
                f"Failed to apply webhook event {event.event_id}",
                stage="database_save",
            ) from exc

        if result.outcome is WebhookOutcome.REJECTED:
            logger.warning("Webhook consumed without effect: event=%s reason=%s", event.event_id, result.reason)
        else:
            logger.info("Webhook applied: event=%s changed=%s", event.event_id, result.changed)

        if result.seller_change is not None:
            self._follow_up(result.seller_change)
        return result

    def _is_stale(self, last_event_at: Optional[datetime], event_time: datetime) -> bool:
        return last_event_at is not None and event_time < last_event_at

    def _record_event_time(self, record: Settlement | Seller, event_time: datetime) -> None:
        if record.last_event_at is None or event_time > record.last_event_at:
            record.last_event_at = event_time

    def _follow_up(self, change: SellerStatusChange) -> None:
        service = SettlementService(self.db, SqlStoreLookup(self.db), self.provider, self.config)
        service.handle_seller_status_change(change.store_id, change.previous, change.current)

    # ── Handlers ─────────────────────────────────────────────────────

    def _apply_payout(self, event: WebhookEvent, event_time: datetime) -> WebhookResult:
        payout_id = event.get_str("payoutId")
        ref_payout_id = event.get_str("refPayoutId")
        order_id = event.get_str("orderId")
        status = (event.get_str("status") or "").upper()
        if not status or not (ref_payout_id or order_id):
            return WebhookResult.rejected(RejectReason.MALFORMED, event.event_id)

        settlement = self._find_settlement(ref_payout_id, order_id)
        if settlement is None:
            return WebhookResult.rejected(RejectReason.UNKNOWN_TARGET, event.event_id)

        if settlement.provider_payout_id and payout_id and settlement.provider_payout_id != payout_id:
            logger.warning(
                "Payout id mismatch: settlement=%s stored=%s event=%s",
                settlement.id,
                settlement.provider_payout_id,
                payout_id,
            )
            return WebhookResult.rejected(RejectReason.ID_MISMATCH, event.event_id)

        if self._is_stale(settlement.last_event_at, event_time):
            logger.warning(
                "Stale payout event: settlement=%s event_time=%s last_event_at=%s",
                settlement.id,
                event_time,
                settlement.last_event_at,
            )
            return WebhookResult.rejected(RejectReason.STALE, event.event_id)

        changed = True
        try:
            if status == SettlementStatus.COMPLETED.value:
                if settlement.is_completed:
                    changed = False
                elif not payout_id:
                    return WebhookResult.rejected(RejectReason.MALFORMED, event.event_id)
                else:
                    settlement.complete(payout_id)
            elif status == SettlementStatus.FAILED.value:
                settlement.fail(event.get_str("failureReason") or "Payout failed at provider")
            elif status == SettlementStatus.CANCELLED.value:
                if settlement.status is SettlementStatus.CANCELLED:
                    changed = False
                else:
                    settlement.cancel(by_provider=True)
            elif status in IN_FLIGHT_PAYOUT_STATUSES:
                if settlement.status is SettlementStatus.PROCESSING:
                    changed = False
                else:
                    settlement.mark_processing()
            else:
                return WebhookResult.rejected(RejectReason.UNSUPPORTED_STATUS, event.event_id)
        except SettlementError as exc:
            if exc.kind is not ErrorKind.STATUS_CONFLICT:
                raise
            logger.warning(
                "Payout event conflicts with settlement state: settlement=%s current=%s requested=%s",
                settlement.id,
                exc.current_status,
                status,
            )
            return WebhookResult.rejected(RejectReason.STATUS_CONFLICT, event.event_id)

        # The provider's payout id is kept from any event that names one.
        if payout_id and not settlement.provider_payout_id:
            settlement.provider_payout_id = payout_id
            changed = True
        self._record_event_time(settlement, event_time)
        if changed:
            logger.info("Settlement %s -> %s via event=%s", settlement.id, settlement.status.value, event.event_id)
        return WebhookResult.applied(event.event_id, changed=changed)

    def _apply_seller(self, event: WebhookEvent, event_time: datetime) -> WebhookResult:
        provider_seller_id = event.get_str("sellerId")
        ref_seller_id = event.get_str("refSellerId")
        status = (event.get_str("status") or "").upper()
        if not status or not ref_seller_id:
            return WebhookResult.rejected(RejectReason.MALFORMED, event.event_id)

        try:
            new_status = SellerStatus(status)
        except ValueError:
            return WebhookResult.rejected(RejectReason.UNSUPPORTED_STATUS, event.event_id)

        seller = (
            self.db.query(Seller).filter(Seller.ref_seller_id == ref_seller_id).first()
        )
        if seller is None:
            return WebhookResult.rejected(RejectReason.UNKNOWN_TARGET, event.event_id)

        if (
            seller.provider_seller_id
            and provider_seller_id
            and seller.provider_seller_id != provider_seller_id
        ):
            logger.warning(
                "Seller id mismatch: store=%s stored=%s event=%s",
                seller.store_id,
                seller.provider_seller_id,
                provider_seller_id,
            )
            return WebhookResult.rejected(RejectReason.ID_MISMATCH, event.event_id)

        if self._is_stale(seller.last_event_at, event_time):
            logger.warning(
                "Stale seller event: store=%s event_time=%s last_event_at=%s",
                seller.store_id,
                event_time,
                seller.last_event_at,
            )
            return WebhookResult.rejected(RejectReason.STALE, event.event_id)

        previous = seller.status
        try:
            status_changed = seller.update_status(new_status)
            changed = status_changed
            if provider_seller_id and not seller.provider_seller_id:
                changed = seller.assign_provider_id(provider_seller_id) or changed
        except SettlementError as exc:
            if exc.kind is not ErrorKind.STATUS_CONFLICT:
                raise
            logger.warning(
                "Seller event conflicts with onboarding state: store=%s current=%s requested=%s",
                seller.store_id,
                exc.current_status,
                new_status.value,
            )
            return WebhookResult.rejected(RejectReason.STATUS_CONFLICT, event.event_id)

        self._record_event_time(seller, event_time)
        result = WebhookResult.applied(event.event_id, changed=changed)
        if status_changed:
            result.seller_change = SellerStatusChange(seller.store_id, previous, new_status)
        return result

    def _find_settlement(
        self,
        ref_payout_id: Optional[str],
        order_id: Optional[str],
    ) -> Optional[Settlement]:
        if ref_payout_id:
            # Payout requests use "settlement-<id>" as the reference.
            parsed = parse_settlement_id(ref_payout_id.removeprefix("settlement-"))
            if parsed is not None:
                settlement = self.db.get(Settlement, parsed)
                if settlement is not None:
                    return settlement
        if order_id:
            return self.db.query(Settlement).filter(Settlement.order_id == order_id).first()
        return None