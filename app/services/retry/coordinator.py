"""Retry coordinator: resubmits FAILED settlements with bounded backoff.

Selection is a plain query; it is *not* what prevents double submission.
Each candidate is claimed with a version-checked FAILED -> PROCESSING
transition, so when two passes (or a pass and a webhook) race on the same
record only one of them gets to call the provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import Settings, settings
from app.core.errors import ErrorKind, SettlementError
from app.core.logging import get_logger
from app.models.settlement import Settlement
from app.services.collaborators.payout_provider import PayoutProvider
from app.services.collaborators.store_lookup import StoreLookup
from app.services.persistence import commit_transition
from app.services.retry.backoff import is_due
from app.services.settlement.service import SettlementService

logger = get_logger(__name__)


@dataclass
class RetryPassResult:
    attempted: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    manual_action: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errored: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "attempted": self.attempted,
            "completed": self.completed,
            "failed": self.failed,
            "manual_action": self.manual_action,
            "skipped": self.skipped,
            "errored": self.errored,
        }


class RetryCoordinator:
    """Finds retry-eligible settlements and resubmits them."""

    def __init__(
        self,
        db: Session,
        provider: PayoutProvider,
        store_lookup: StoreLookup,
        config: Settings = settings,
    ) -> None:
        self.db = db
        self.config = config
        self.settlements = SettlementService(db, store_lookup, provider, config)

    def find_eligible(self, now: Optional[datetime] = None) -> list[Settlement]:
        """FAILED settlements with attempts left whose backoff has elapsed."""
        now = now or utcnow()
        candidates = self.settlements.list_retryable(limit=self.config.retry_batch_size)
        return [s for s in candidates if self._is_due(s, now)]

    def run_once(self, now: Optional[datetime] = None) -> RetryPassResult:
        result = RetryPassResult()
        eligible = self.find_eligible(now)
        logger.info("Retry pass started: eligible=%d", len(eligible))

        for settlement in eligible:
            settlement_id = str(settlement.id)
            try:
                self._retry_one(settlement, result)
            except Exception:
                # One bad record must not stop the pass.
                self.db.rollback()
                logger.exception("Retry errored: settlement=%s", settlement_id)
                result.errored.append(settlement_id)

        logger.info(
            "Retry pass finished: attempted=%d completed=%d failed=%d manual=%d skipped=%d errored=%d",
            len(result.attempted),
            len(result.completed),
            len(result.failed),
            len(result.manual_action),
            len(result.skipped),
            len(result.errored),
        )
        return result

    def _is_due(self, settlement: Settlement, now: datetime) -> bool:
        return is_due(
            now,
            settlement.updated_at,
            settlement.retry_count,
            self.config.retry_delay_unit_seconds,
            self.config.retry_base_delay,
            self.config.retry_multiplier,
            self.config.retry_max_delay,
        )

    def _retry_one(self, settlement: Settlement, result: RetryPassResult) -> None:
        settlement_id = str(settlement.id)
        try:
            destination = self.settlements.payout_destination(settlement)
            settlement.retry(self.config.retry_max_attempts)
            settlement.provider_seller_id = destination
            commit_transition(self.db, settlement, "retry")
        except SettlementError as exc:
            if exc.kind is not ErrorKind.STATUS_CONFLICT:
                raise
            self.db.rollback()
            logger.info("Retry skipped: settlement=%s reason=%s", settlement_id, exc.message)
            result.skipped.append(settlement_id)
            return

        result.attempted.append(settlement_id)
        logger.info(
            "Retrying settlement=%s attempt=%d",
            settlement_id,
            settlement.retry_count + 1,
        )
        try:
            error = self.settlements.dispatch_payout(settlement, destination)
        except SettlementError as exc:
            if exc.kind is not ErrorKind.STATUS_CONFLICT:
                raise
            # A webhook finished the record while the provider call was in flight.
            self.db.rollback()
            logger.info("Retry outcome superseded: settlement=%s", settlement_id)
            result.skipped.append(settlement_id)
            return

        if error is None:
            result.completed.append(settlement_id)
        elif error.retryable:
            result.failed.append(settlement_id)
        else:
            result.manual_action.append(settlement_id)
