"""Tests for seller onboarding status rules."""

import pytest

from app.core.errors import ErrorKind, SettlementError
from app.models.seller import ALLOWED_TRANSITIONS, BusinessType, Seller, SellerStatus


def _seller(business_type=BusinessType.INDIVIDUAL_BUSINESS) -> Seller:
    return Seller.build("S1", business_type)


class TestBuild:

    def test_new_seller_awaits_approval(self):
        seller = _seller()
        assert seller.status is SellerStatus.APPROVAL_REQUIRED
        assert seller.ref_seller_id == "S1"
        assert seller.provider_seller_id is None
        assert seller.is_pending_approval()
        assert seller.can_process_payout() is False

    def test_business_type_flags(self):
        assert BusinessType.CORPORATE.requires_kyc
        assert not BusinessType.INDIVIDUAL_BUSINESS.requires_kyc
        assert BusinessType.INDIVIDUAL_BUSINESS.supports_partial_approval
        assert not BusinessType.CORPORATE.supports_partial_approval


class TestPayoutEligibility:

    @pytest.mark.parametrize("status", list(SellerStatus))
    def test_requires_provider_id(self, status):
        seller = _seller()
        seller.status = status
        assert seller.can_process_payout() is False

    @pytest.mark.parametrize(
        "status,eligible",
        [
            (SellerStatus.APPROVAL_REQUIRED, False),
            (SellerStatus.KYC_REQUIRED, False),
            (SellerStatus.PARTIALLY_APPROVED, True),
            (SellerStatus.APPROVED, True),
            (SellerStatus.REJECTED, False),
            (SellerStatus.SUSPENDED, False),
        ],
    )
    def test_eligible_statuses_with_provider_id(self, status, eligible):
        seller = _seller()
        seller.provider_seller_id = "PS1"
        seller.status = status
        assert seller.can_process_payout() is eligible

    def test_approval_then_registration(self):
        seller = _seller()
        assert seller.update_status(SellerStatus.APPROVED) is True
        assert seller.can_process_payout() is False

        assert seller.assign_provider_id("PS1") is True
        assert seller.can_process_payout() is True


class TestStatusTransitions:

    def test_approved_is_terminal(self):
        seller = _seller()
        seller.update_status(SellerStatus.APPROVED)
        assert seller.approved_at is not None
        with pytest.raises(SettlementError) as exc:
            seller.update_status(SellerStatus.SUSPENDED)
        assert exc.value.kind is ErrorKind.STATUS_CONFLICT
        assert exc.value.current_status == "APPROVED"

    def test_same_status_is_noop(self):
        seller = _seller()
        assert seller.update_status(SellerStatus.APPROVAL_REQUIRED) is False
        assert seller.updated_at is None

    def test_rejected_can_reapply(self):
        seller = _seller()
        seller.update_status(SellerStatus.REJECTED)
        assert seller.update_status(SellerStatus.APPROVAL_REQUIRED) is True
        assert seller.status is SellerStatus.APPROVAL_REQUIRED

    def test_rejected_cannot_jump_to_approved(self):
        seller = _seller()
        seller.update_status(SellerStatus.REJECTED)
        with pytest.raises(SettlementError):
            seller.update_status(SellerStatus.APPROVED)

    def test_every_state_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(SellerStatus)


class TestProviderId:

    def test_reassigning_same_id_is_noop(self):
        seller = _seller()
        seller.assign_provider_id("PS1")
        assert seller.assign_provider_id("PS1") is False

    def test_different_id_conflicts(self):
        seller = _seller()
        seller.assign_provider_id("PS1")
        with pytest.raises(SettlementError) as exc:
            seller.assign_provider_id("PS2")
        assert exc.value.kind is ErrorKind.STATUS_CONFLICT
        assert seller.provider_seller_id == "PS1"

    def test_blank_id_is_invalid(self):
        with pytest.raises(SettlementError) as exc:
            _seller().assign_provider_id("")
        assert exc.value.kind is ErrorKind.VALIDATION
