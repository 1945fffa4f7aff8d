"""
Tests for award finalization - ranking, standby assignment and overrides.
"""
from datetime import timedelta

import pytest

from backend.award.errors import InvalidTransition, PreconditionNotMet, ValidationError
from backend.award.finalizer import AwardSelection, finalize, rank_by_score
from backend.award.projection import project_quotations
from shared.constants import (
    AwardItemStatus, AwardStrategy, QuotationStatus, RequisitionStatus
)

from core_builders import NOW, make_item_quotation, make_quotation, make_requisition, settings


def _scored(*scores):
    requisition = make_requisition()
    quotations = [
        make_quotation(requisition, f"v{i + 1}", score=s, offset_minutes=i)
        for i, s in enumerate(scores)
    ]
    return requisition, quotations


def _by_vendor(quotations):
    return {q.vendor_id: q for q in quotations}


class TestRankByScore:

    def test_forced_candidate_moves_to_front(self):
        ranked = rank_by_score(
            ["a", "b", "c"],
            score_of={"a": 3, "b": 2, "c": 1}.get,
            created_of=lambda c: NOW,
            forced=lambda c: c == "c",
        )
        assert ranked == ["c", "a", "b"]


class TestFinalizeAllStrategy:
    """One vendor wins the whole requisition."""

    def test_ranks_winner_standbys_and_rejected(self):
        requisition, quotations = _scored(60, 90, 70, 80)

        outcome = finalize(requisition, quotations, [], settings(), NOW)
        quotes = _by_vendor(outcome.quotations)

        assert quotes["v2"].status == QuotationStatus.PENDING_AWARD
        assert quotes["v2"].rank == 1
        assert quotes["v4"].status == QuotationStatus.STANDBY
        assert quotes["v4"].rank == 2
        assert quotes["v3"].status == QuotationStatus.STANDBY
        assert quotes["v3"].rank == 3
        assert quotes["v1"].status == QuotationStatus.REJECTED
        assert quotes["v1"].rank is None
        assert outcome.requisition.status == RequisitionStatus.AWARDED
        assert outcome.pending_targets == ["q-v2"]

    def test_ranks_have_no_gaps_and_scores_never_increase(self):
        requisition, quotations = _scored(55, 91, 72, 72, 10)
        outcome = finalize(requisition, quotations, [], settings(standby_count_all=10), NOW)

        ranked = sorted((q for q in outcome.quotations if q.rank), key=lambda q: q.rank)
        assert [q.rank for q in ranked] == list(range(1, len(quotations) + 1))
        scores = [q.final_average_score for q in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_tie_goes_to_earlier_submission(self):
        requisition = make_requisition()
        late = make_quotation(requisition, "late", score=80, offset_minutes=30)
        early = make_quotation(requisition, "early", score=80, offset_minutes=0)

        outcome = finalize(requisition, [late, early], [], settings(), NOW)
        quotes = _by_vendor(outcome.quotations)

        assert quotes["early"].status == QuotationStatus.PENDING_AWARD
        assert quotes["late"].rank == 2

    def test_reviewer_can_pick_the_winner(self):
        requisition, quotations = _scored(60, 90, 70)
        outcome = finalize(requisition, quotations, [], settings(), NOW, selection=AwardSelection(vendor_id="v1"))
        quotes = _by_vendor(outcome.quotations)

        assert quotes["v1"].status == QuotationStatus.PENDING_AWARD
        assert quotes["v2"].rank == 2
        assert quotes["v3"].rank == 3

    def test_picking_unknown_vendor_is_rejected(self):
        requisition, quotations = _scored(60, 90)
        with pytest.raises(ValidationError):
            finalize(requisition, quotations, [], settings(), NOW, selection=AwardSelection(vendor_id="nobody"))

    def test_waits_for_every_scorer(self):
        requisition = make_requisition(financial_committee=["m1"], technical_committee=["m2"])
        quotations = [make_quotation(requisition, "v1", score=50)]

        with pytest.raises(PreconditionNotMet) as exc:
            finalize(requisition, quotations, ["m1"], settings(), NOW)
        assert "Waiting for 1 more scorer(s)" in exc.value.message

    def test_cannot_finalize_twice(self):
        requisition, quotations = _scored(60, 90)
        outcome = finalize(requisition, quotations, [], settings(), NOW)
        with pytest.raises(InvalidTransition):
            finalize(outcome.requisition, outcome.quotations, [], settings(), NOW)

    def test_declined_quotations_are_not_eligible(self):
        requisition, quotations = _scored(60, 90, 70)
        quotations[1].status = QuotationStatus.DECLINED

        outcome = finalize(requisition, quotations, [], settings(), NOW)
        quotes = _by_vendor(outcome.quotations)

        assert quotes["v3"].status == QuotationStatus.PENDING_AWARD
        assert quotes["v2"].status == QuotationStatus.DECLINED

    def test_nothing_eligible(self):
        requisition, quotations = _scored(60)
        quotations[0].status = QuotationStatus.REJECTED
        with pytest.raises(PreconditionNotMet):
            finalize(requisition, quotations, [], settings(), NOW)

    def test_explicit_deadline_sets_response_window(self):
        requisition, quotations = _scored(60, 90)
        deadline = NOW + timedelta(minutes=90, seconds=30)

        outcome = finalize(requisition, quotations, [], settings(), NOW, award_response_deadline=deadline)

        assert outcome.requisition.award_response_deadline == deadline
        assert outcome.requisition.award_response_duration_minutes == 91
        assert _by_vendor(outcome.quotations)["v2"].response_deadline == deadline

    def test_deadline_in_the_past_is_rejected(self):
        requisition, quotations = _scored(60, 90)
        with pytest.raises(ValidationError):
            finalize(requisition, quotations, [], settings(), NOW, award_response_deadline=NOW - timedelta(hours=1))

    def test_default_window_from_settings(self):
        requisition, quotations = _scored(60, 90)
        outcome = finalize(requisition, quotations, [], settings(default_award_response_minutes=60), NOW)
        assert _by_vendor(outcome.quotations)["v2"].response_deadline == NOW + timedelta(minutes=60)
        assert outcome.requisition.award_response_duration_minutes == 60

    def test_inputs_are_not_mutated(self):
        requisition, quotations = _scored(60, 90)
        finalize(requisition, quotations, [], settings(), NOW)
        assert requisition.status == RequisitionStatus.SCORING_COMPLETE
        assert all(q.status == QuotationStatus.SUBMITTED for q in quotations)


def _item_round():
    """Two items, three vendors bidding on both."""
    requisition = make_requisition(strategy=AwardStrategy.ITEM, item_ids=("item-1", "item-2"))
    quotations = [
        make_item_quotation(requisition, "x", {"item-1": 90, "item-2": 85}, offset_minutes=0),
        make_item_quotation(requisition, "y", {"item-1": 80, "item-2": 95}, offset_minutes=1),
        make_item_quotation(requisition, "z", {"item-1": 70, "item-2": 60}, offset_minutes=2),
    ]
    return requisition, quotations


def _details(requisition, item_id):
    item = requisition.get_item(item_id)
    return {d.vendor_id: d for d in item.per_item_award_details}


class TestFinalizeItemStrategy:
    """Each requisition item is awarded on its own."""

    def test_each_item_gets_winner_standby_and_rejected(self):
        requisition, quotations = _item_round()
        outcome = finalize(requisition, quotations, [], settings(), NOW)

        item_1 = _details(outcome.requisition, "item-1")
        assert item_1["x"].status == AwardItemStatus.PENDING_AWARD
        assert item_1["x"].rank == 1
        assert item_1["y"].status == AwardItemStatus.STANDBY
        assert item_1["z"].status == AwardItemStatus.REJECTED

        item_2 = _details(outcome.requisition, "item-2")
        assert item_2["y"].status == AwardItemStatus.PENDING_AWARD
        assert item_2["x"].status == AwardItemStatus.STANDBY
        assert len(outcome.pending_targets) == 2

    def test_overall_status_is_projected_from_details(self):
        requisition, quotations = _item_round()
        outcome = finalize(requisition, quotations, [], settings(), NOW)

        # Stored status is never updated independently of the details
        assert all(q.status == QuotationStatus.SUBMITTED for q in outcome.quotations)

        projected = _by_vendor(project_quotations(outcome.requisition, outcome.quotations))
        assert projected["x"].status == QuotationStatus.PARTIALLY_AWARDED
        assert projected["y"].status == QuotationStatus.PARTIALLY_AWARDED
        assert projected["z"].status == QuotationStatus.REJECTED

    def test_reviewer_can_pick_an_item_winner(self):
        requisition, quotations = _item_round()
        selection = AwardSelection(item_winners={"item-1": "z-item-1"})

        outcome = finalize(requisition, quotations, [], settings(), NOW, selection=selection)

        item_1 = _details(outcome.requisition, "item-1")
        assert item_1["z"].status == AwardItemStatus.PENDING_AWARD
        assert item_1["x"].status == AwardItemStatus.STANDBY

    def test_single_vendor_pick_is_not_allowed(self):
        requisition, quotations = _item_round()
        with pytest.raises(ValidationError):
            finalize(requisition, quotations, [], settings(), NOW, selection=AwardSelection(vendor_id="x"))

    def test_item_without_bids_has_no_candidates(self):
        requisition = make_requisition(strategy=AwardStrategy.ITEM, item_ids=("item-1", "item-3"))
        quotations = [make_item_quotation(requisition, "x", {"item-1": 90})]

        outcome = finalize(requisition, quotations, [], settings(), NOW)

        assert outcome.requisition.get_item("item-3").per_item_award_details == []
        assert _details(outcome.requisition, "item-1")["x"].status == AwardItemStatus.PENDING_AWARD


def _retender_round():
    """x accepted item-1; item-2 failed, was restarted and w quoted for it."""
    requisition, quotations = _item_round()
    outcome = finalize(requisition, quotations, [], settings(), NOW)
    requisition = outcome.requisition
    _details(requisition, "item-1")["x"].status = AwardItemStatus.ACCEPTED
    for detail in requisition.get_item("item-2").per_item_award_details:
        detail.status = AwardItemStatus.RESTARTED
    requisition.status = RequisitionStatus.SCORING_COMPLETE
    quotations = outcome.quotations + [make_item_quotation(requisition, "w", {"item-2": 75}, offset_minutes=3)]
    return requisition, quotations


class TestFinalizeRetender:
    """A second round ranks only the restarted items."""

    def test_settled_item_keeps_its_award(self):
        requisition, quotations = _retender_round()
        before = [d.model_copy() for d in requisition.get_item("item-1").per_item_award_details]

        outcome = finalize(requisition, quotations, [], settings(), NOW + timedelta(days=3))

        assert outcome.requisition.get_item("item-1").per_item_award_details == before
        assert _details(outcome.requisition, "item-1")["x"].status == AwardItemStatus.ACCEPTED
        assert outcome.requisition.status == RequisitionStatus.AWARDED

    def test_proposals_ranked_before_do_not_compete_again(self):
        requisition, quotations = _retender_round()
        outcome = finalize(requisition, quotations, [], settings(), NOW + timedelta(days=3))

        details = outcome.requisition.get_item("item-2").per_item_award_details
        assert [d.status for d in details[:3]] == [AwardItemStatus.RESTARTED] * 3
        [fresh] = details[3:]
        assert fresh.vendor_id == "w"
        assert fresh.status == AwardItemStatus.PENDING_AWARD
        assert outcome.pending_targets == [fresh.id]

    def test_settled_item_cannot_be_reassigned(self):
        requisition, quotations = _retender_round()
        selection = AwardSelection(item_winners={"item-1": "w-item-1"})
        with pytest.raises(ValidationError):
            finalize(requisition, quotations, [], settings(), NOW, selection=selection)

    def test_round_without_new_proposals(self):
        requisition, quotations = _retender_round()
        with pytest.raises(PreconditionNotMet):
            finalize(requisition, quotations[:-1], [], settings(), NOW)
