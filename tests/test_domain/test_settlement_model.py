"""Tests for settlement fee arithmetic and the status state machine."""

from decimal import Decimal

import pytest

from app.core.errors import ErrorKind, SettlementError
from app.models.settlement import (
    MANUAL_ACTION_PREFIX,
    MAX_RETRY_ATTEMPTS,
    Settlement,
    SettlementStatus,
    compute_fees,
)


def _settlement(amount="10000", rate="0.20", order_id="O1") -> Settlement:
    return Settlement.build("S1", order_id, Decimal(amount), Decimal(rate))


class TestComputeFees:

    def test_twenty_percent_of_ten_thousand(self):
        fee, net = compute_fees(Decimal("10000"), Decimal("0.20"))
        assert fee == Decimal("2000.00")
        assert net == Decimal("8000.00")

    def test_rounds_half_up(self):
        fee, net = compute_fees(Decimal("0.05"), Decimal("0.5"))
        assert fee == Decimal("0.03")
        assert net == Decimal("0.02")

    @pytest.mark.parametrize(
        "amount,rate",
        [
            ("33.33", "0.175"),
            ("1.01", "0.3333"),
            ("999999.99", "0.0725"),
            ("0.01", "1"),
        ],
    )
    def test_fee_and_payout_add_back_to_amount(self, amount, rate):
        fee, net = compute_fees(Decimal(amount), Decimal(rate))
        assert fee + net == Decimal(amount)
        assert fee == fee.quantize(Decimal("0.01"))

    def test_zero_rate_pays_everything_out(self):
        fee, net = compute_fees(Decimal("150.00"), Decimal("0"))
        assert fee == Decimal("0.00")
        assert net == Decimal("150.00")


class TestBuild:

    def test_new_settlement_starts_pending(self):
        s = _settlement()
        assert s.status is SettlementStatus.PENDING
        assert s.platform_fee == Decimal("2000.00")
        assert s.settlement_amount == Decimal("8000.00")
        assert s.retry_count == 0
        assert s.requires_manual_action is False
        assert s.updated_at is None

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_rejects_non_positive_amount(self, amount):
        with pytest.raises(SettlementError) as exc:
            _settlement(amount=amount)
        assert exc.value.kind is ErrorKind.VALIDATION
        assert "amount" in exc.value.field_errors

    @pytest.mark.parametrize("rate", ["-0.01", "1.5"])
    def test_rejects_rate_outside_unit_interval(self, rate):
        with pytest.raises(SettlementError) as exc:
            _settlement(rate=rate)
        assert "fee_rate" in exc.value.field_errors

    def test_rejects_float_amount(self):
        with pytest.raises(SettlementError) as exc:
            Settlement.build("S1", "O1", 10.5, Decimal("0.2"))
        assert exc.value.kind is ErrorKind.VALIDATION

    @pytest.mark.parametrize("amount", ["0.025", "10.001"])
    def test_rejects_amount_finer_than_minor_unit(self, amount):
        with pytest.raises(SettlementError) as exc:
            _settlement(amount=amount, rate="0.5")
        assert exc.value.field_errors["amount"] == ["must have at most 2 decimal places"]

    def test_rejects_rate_with_more_than_four_places(self):
        with pytest.raises(SettlementError) as exc:
            _settlement(rate="0.20001")
        assert "fee_rate" in exc.value.field_errors

    def test_trailing_zeros_are_not_extra_precision(self):
        s = _settlement(amount="12.5000", rate="0.200000")
        assert s.original_amount == Decimal("12.50")
        assert s.platform_fee + s.settlement_amount == s.original_amount

    def test_rejects_amount_beyond_column_range(self):
        with pytest.raises(SettlementError) as exc:
            _settlement(amount="1E+17")
        assert "amount" in exc.value.field_errors

    def test_minor_unit_follows_configured_scale(self):
        with pytest.raises(SettlementError):
            Settlement.build("S1", "O1", Decimal("10.50"), Decimal("0.2"), minor_unit=Decimal("1"))

    def test_requires_order_id(self):
        with pytest.raises(SettlementError) as exc:
            Settlement.build("S1", "  ", Decimal("10"), Decimal("0.2"))
        assert "order_id" in exc.value.field_errors


class TestTransitions:

    def test_complete_from_pending(self):
        s = _settlement()
        s.complete("P1")
        assert s.status is SettlementStatus.COMPLETED
        assert s.provider_payout_id == "P1"
        assert s.completed_at is not None
        assert s.is_completed

    def test_complete_requires_payout_id(self):
        s = _settlement()
        with pytest.raises(SettlementError) as exc:
            s.complete("")
        assert exc.value.kind is ErrorKind.VALIDATION
        assert s.status is SettlementStatus.PENDING

    def test_mark_processing_only_from_pending(self):
        s = _settlement()
        s.mark_processing()
        assert s.status is SettlementStatus.PROCESSING
        with pytest.raises(SettlementError) as exc:
            s.mark_processing()
        assert exc.value.kind is ErrorKind.STATUS_CONFLICT
        assert exc.value.current_status == "PROCESSING"

    def test_terminal_states_reject_everything(self):
        s = _settlement()
        s.complete("P1")
        for action in (lambda: s.fail("boom"), lambda: s.complete("P2"), s.cancel, s.mark_processing):
            with pytest.raises(SettlementError) as exc:
                action()
            assert exc.value.kind is ErrorKind.STATUS_CONFLICT
        assert s.provider_payout_id == "P1"

    def test_fail_sets_message_and_counts_attempt(self):
        s = _settlement()
        s.fail("TIMEOUT: provider did not answer")
        assert s.status is SettlementStatus.FAILED
        assert s.retry_count == 1
        assert s.error_message == "TIMEOUT: provider did not answer"
        assert s.is_failed
        assert s.can_retry()

    def test_retry_count_saturates(self):
        s = _settlement()
        for _ in range(MAX_RETRY_ATTEMPTS + 2):
            s.fail("NETWORK_ERROR: down")
        assert s.retry_count == MAX_RETRY_ATTEMPTS
        assert s.can_retry() is False

    def test_non_retryable_failure_needs_manual_action(self):
        s = _settlement()
        s.fail("INSUFFICIENT_BALANCE: top up", retryable=False)
        assert s.requires_manual_action is True
        assert s.error_message.startswith(MANUAL_ACTION_PREFIX)
        assert s.can_retry() is False

    def test_fail_requires_message(self):
        s = _settlement()
        with pytest.raises(SettlementError):
            s.fail("   ")

    def test_retry_claims_failed_record(self):
        s = _settlement()
        s.fail("TIMEOUT: slow")
        s.retry()
        assert s.status is SettlementStatus.PROCESSING
        assert s.retry_count == 1

    def test_retry_rejected_when_not_failed(self):
        s = _settlement()
        with pytest.raises(SettlementError) as exc:
            s.retry()
        assert exc.value.requested_action == "retry"

    def test_complete_after_failure_clears_error(self):
        s = _settlement()
        s.fail("INSUFFICIENT_BALANCE", retryable=False)
        s.complete("P9")
        assert s.status is SettlementStatus.COMPLETED
        assert s.error_message is None
        assert s.requires_manual_action is False


class TestCancel:

    def test_operator_cancel_from_pending_and_failed(self):
        pending = _settlement()
        pending.cancel()
        assert pending.status is SettlementStatus.CANCELLED

        failed = _settlement(order_id="O2")
        failed.fail("boom")
        failed.cancel()
        assert failed.status is SettlementStatus.CANCELLED

    def test_operator_cannot_cancel_in_flight_payout(self):
        s = _settlement()
        s.mark_processing()
        with pytest.raises(SettlementError) as exc:
            s.cancel()
        assert exc.value.kind is ErrorKind.STATUS_CONFLICT

    def test_provider_may_cancel_in_flight_payout(self):
        s = _settlement()
        s.mark_processing()
        s.cancel(by_provider=True)
        assert s.status is SettlementStatus.CANCELLED


class TestIdempotencyKey:

    def test_key_is_stable_across_attempts(self):
        s = _settlement()
        key = s.idempotency_key
        s.fail("TIMEOUT")
        s.retry()
        assert s.idempotency_key == key
        assert key == f"settlement-{s.id}"
