"""
Tests for the derived quotation status and scope checks.
"""
import pytest

from backend.award.models import PerItemAwardDetail
from backend.award.projection import (
    derive_item_quotation_status, item_open_for_tender, open_item_ids, quotation_status, scope_violations
)
from shared.constants import AwardItemStatus as D, AwardStrategy, QuotationStatus

from core_builders import make_quotation, make_requisition


def _detail(status, item_id="item-1", vendor_id="x", rank=1):
    return PerItemAwardDetail(
        requisition_item_id=item_id,
        quotation_id=f"q-{vendor_id}",
        quote_item_id=f"{vendor_id}-{item_id}",
        vendor_id=vendor_id,
        rank=rank,
        status=status,
    )


class TestDeriveItemQuotationStatus:

    @pytest.mark.parametrize("statuses,expected", [
        ([D.ACCEPTED, D.STANDBY], QuotationStatus.ACCEPTED),
        ([D.ACCEPTED, D.PENDING_AWARD], QuotationStatus.ACCEPTED),
        ([D.PENDING_AWARD, D.STANDBY], QuotationStatus.PARTIALLY_AWARDED),
        ([D.AWARDED, D.REJECTED], QuotationStatus.PARTIALLY_AWARDED),
        ([D.STANDBY, D.REJECTED], QuotationStatus.STANDBY),
        ([D.DECLINED, D.REJECTED], QuotationStatus.DECLINED),
        ([D.REJECTED, D.FAILED_TO_AWARD], QuotationStatus.REJECTED),
        ([D.RESTARTED], QuotationStatus.REJECTED),
        ([], QuotationStatus.SUBMITTED),
    ])
    def test_precedence(self, statuses, expected):
        details = [_detail(s, item_id=f"item-{i}") for i, s in enumerate(statuses)]
        assert derive_item_quotation_status(details) == expected


class TestQuotationStatus:

    def test_single_strategy_uses_stored_status(self):
        requisition = make_requisition()
        quote = make_quotation(requisition, "v1", status=QuotationStatus.STANDBY)
        assert quotation_status(requisition, quote) == QuotationStatus.STANDBY

    def test_item_strategy_without_details_keeps_stored_status(self):
        requisition = make_requisition(strategy=AwardStrategy.ITEM)
        quote = make_quotation(requisition, "x")
        assert quotation_status(requisition, quote) == QuotationStatus.SUBMITTED


class TestScopeViolations:

    def test_two_live_awards_in_one_item_is_a_violation(self):
        requisition = make_requisition(strategy=AwardStrategy.ITEM, item_ids=("item-1", "item-2"))
        requisition.get_item("item-1").per_item_award_details = [
            _detail(D.ACCEPTED, vendor_id="x"),
            _detail(D.PENDING_AWARD, vendor_id="y", rank=2),
        ]
        requisition.get_item("item-2").per_item_award_details = [
            _detail(D.PENDING_AWARD, item_id="item-2", vendor_id="x"),
        ]
        assert scope_violations(requisition, []) == ["item-1"]

    def test_single_strategy_scope_is_the_requisition(self):
        requisition = make_requisition()
        quotations = [
            make_quotation(requisition, "v1", status=QuotationStatus.PENDING_AWARD),
            make_quotation(requisition, "v2", status=QuotationStatus.PENDING_AWARD),
        ]
        assert scope_violations(requisition, quotations) == [requisition.id]


class TestRestartedRounds:

    def test_restarted_details_are_history(self):
        requisition = make_requisition(strategy=AwardStrategy.ITEM, item_ids=("item-1", "item-2"))
        requisition.get_item("item-1").per_item_award_details = [_detail(D.ACCEPTED, vendor_id="y")]
        requisition.get_item("item-2").per_item_award_details = [
            _detail(D.RESTARTED, item_id="item-2", vendor_id="x"),
        ]
        # x quoted again for the re-tendered item
        quote = make_quotation(requisition, "x")
        assert quotation_status(requisition, quote) == QuotationStatus.SUBMITTED

    def test_open_items(self):
        requisition = make_requisition(strategy=AwardStrategy.ITEM, item_ids=("item-1", "item-2", "item-3"))
        requisition.get_item("item-1").per_item_award_details = [_detail(D.ACCEPTED)]
        requisition.get_item("item-2").per_item_award_details = [
            _detail(D.RESTARTED, item_id="item-2"),
            _detail(D.RESTARTED, item_id="item-2", vendor_id="y", rank=2),
        ]
        assert open_item_ids(requisition) == ["item-2", "item-3"]
        assert not item_open_for_tender(requisition.get_item("item-1"))
