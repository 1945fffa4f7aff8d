"""
Tests for requisition status transitions and their guards.
"""
from datetime import timedelta

import pytest

from backend.award.errors import InvalidTransition
from backend.award.models import PerItemAwardDetail
from backend.award.status_machine import StatusMachine
from shared.constants import AwardItemStatus, AwardStrategy, QuotationStatus, RequisitionStatus as S
from shared.stage_prereqs import allowed_actions

from core_builders import NOW, make_quotation, make_requisition, settings


class TestTransitionGraph:

    @pytest.mark.parametrize("current,target", [
        (S.PRE_APPROVED, S.ACCEPTING_QUOTES),
        (S.ACCEPTING_QUOTES, S.SCORING_IN_PROGRESS),
        (S.SCORING_IN_PROGRESS, S.SCORING_COMPLETE),
        (S.SCORING_COMPLETE, S.AWARDED),
        (S.AWARDED, S.AWARD_DECLINED),
        (S.AWARDED, S.POST_APPROVED),
        (S.AWARD_DECLINED, S.PRE_APPROVED),
        (S.AWARDED, S.ACCEPTING_QUOTES),
        (S.AWARD_DECLINED, S.ACCEPTING_QUOTES),
        (S.POST_APPROVED, S.PO_CREATED),
        (S.PO_CREATED, S.PARTIALLY_CLOSED),
        (S.PARTIALLY_CLOSED, S.FULFILLED),
        (S.FULFILLED, S.CLOSED),
    ])
    def test_lifecycle_edges_are_allowed(self, current, target):
        is_valid, error = StatusMachine.validate_transition(current, target)
        assert is_valid, error

    @pytest.mark.parametrize("status", [S.AWARDED, S.AWARD_DECLINED])
    def test_failed_awards_can_be_cancelled_or_retendered(self, status):
        actions = allowed_actions(status)
        assert "cancel_rfq" in actions
        assert "restart_item_rfq" in actions

    def test_cannot_skip_scoring(self):
        is_valid, error = StatusMachine.validate_transition(S.ACCEPTING_QUOTES, S.AWARDED)
        assert not is_valid
        assert "Accepting_Quotes" in error

    def test_closed_is_terminal(self):
        for target in S:
            is_valid, _ = StatusMachine.validate_transition(S.CLOSED, target)
            assert not is_valid

    def test_transition_updates_status_and_timestamp(self):
        requisition = make_requisition(status=S.SCORING_COMPLETE)
        StatusMachine.transition(requisition, S.AWARDED, NOW)
        assert requisition.status == S.AWARDED
        assert requisition.updated_at == NOW

    def test_transition_to_same_status_is_a_no_op(self):
        requisition = make_requisition(status=S.AWARDED)
        before = requisition.updated_at
        StatusMachine.transition(requisition, S.AWARDED, NOW)
        assert requisition.updated_at == before

    def test_illegal_transition_raises(self):
        requisition = make_requisition(status=S.PRE_APPROVED)
        with pytest.raises(InvalidTransition):
            StatusMachine.transition(requisition, S.CLOSED, NOW)


class TestQuotationWindowGuards:
    """Accepting_Quotes: start scoring, reopen, or restart."""

    def _open_requisition(self):
        requisition = make_requisition(status=S.ACCEPTING_QUOTES)
        requisition.deadline = NOW - timedelta(minutes=1)
        return requisition

    def test_scoring_starts_with_quorum_after_deadline(self):
        ok, reason = StatusMachine.can_start_scoring(self._open_requisition(), 3, settings(), NOW)
        assert ok, reason

    def test_scoring_waits_for_deadline(self):
        requisition = self._open_requisition()
        requisition.deadline = NOW + timedelta(hours=1)
        ok, reason = StatusMachine.can_start_scoring(requisition, 5, settings(), NOW)
        assert not ok
        assert "deadline" in reason

    def test_below_quorum_needs_reopen(self):
        requisition = self._open_requisition()
        ok, _ = StatusMachine.can_start_scoring(requisition, 2, settings(), NOW)
        assert not ok
        assert StatusMachine.needs_reopen(requisition, 2, settings(), NOW)
        assert not StatusMachine.needs_restart(requisition, 2, NOW)

    def test_zero_bids_needs_restart(self):
        requisition = self._open_requisition()
        assert StatusMachine.needs_restart(requisition, 0, NOW)
        assert not StatusMachine.needs_reopen(requisition, 0, settings(), NOW)

    def test_quorum_comes_from_settings(self):
        ok, _ = StatusMachine.can_start_scoring(self._open_requisition(), 1, settings(committee_quorum=1), NOW)
        assert ok


class TestPostApprovalGuard:

    def _awarded(self, statuses):
        requisition = make_requisition(status=S.AWARDED)
        quotations = [
            make_quotation(requisition, f"v{i}", status=status)
            for i, status in enumerate(statuses)
        ]
        return requisition, quotations

    def test_accepted_award_can_be_approved(self):
        requisition, quotations = self._awarded([QuotationStatus.ACCEPTED, QuotationStatus.STANDBY])
        ok, reason = StatusMachine.can_post_approve(requisition, quotations, approval_granted=True)
        assert ok, reason

    def test_pending_offer_blocks_approval(self):
        requisition, quotations = self._awarded([QuotationStatus.PENDING_AWARD, QuotationStatus.STANDBY])
        ok, reason = StatusMachine.can_post_approve(requisition, quotations, approval_granted=True)
        assert not ok
        assert "waiting" in reason

    def test_approval_chain_must_complete(self):
        requisition, quotations = self._awarded([QuotationStatus.ACCEPTED])
        ok, _ = StatusMachine.can_post_approve(requisition, quotations, approval_granted=False)
        assert not ok

    def test_item_strategy_needs_one_accepted_item(self):
        requisition = make_requisition(strategy=AwardStrategy.ITEM, item_ids=("item-1", "item-2"), status=S.AWARDED)
        requisition.get_item("item-1").per_item_award_details = [PerItemAwardDetail(
            requisition_item_id="item-1", quotation_id="q-x", quote_item_id="x-item-1",
            vendor_id="x", rank=1, status=AwardItemStatus.ACCEPTED,
        )]
        requisition.get_item("item-2").per_item_award_details = [PerItemAwardDetail(
            requisition_item_id="item-2", quotation_id="q-x", quote_item_id="x-item-2",
            vendor_id="x", rank=1, status=AwardItemStatus.FAILED_TO_AWARD,
        )]
        ok, reason = StatusMachine.can_post_approve(requisition, [], approval_granted=True)
        assert ok, reason
