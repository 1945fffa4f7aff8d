"""
Record builders for the award core tests.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from backend.award.models import (
    CommitteeScoreSet, Criterion, EvaluationCriteria, ItemScore, Quotation, QuoteItem,
    Requisition, RequisitionItem, RFQSettings
)
from backend.config import AwardSettings
from shared.constants import AwardStrategy, QuotationStatus, RequisitionStatus

NOW = datetime(2026, 3, 2, 9, 0)


def settings(**overrides) -> AwardSettings:
    return AwardSettings(db_url="sqlite://", **overrides)


def criteria() -> EvaluationCriteria:
    return EvaluationCriteria(
        financial_weight=40,
        technical_weight=60,
        financial_criteria=[Criterion(id="price", name="Price", weight=100)],
        technical_criteria=[
            Criterion(id="quality", name="Quality", weight=50),
            Criterion(id="delivery", name="Delivery", weight=50),
        ],
    )


def make_requisition(
    strategy: AwardStrategy = AwardStrategy.ALL,
    item_ids: Iterable[str] = ("item-1",),
    status: RequisitionStatus = RequisitionStatus.SCORING_COMPLETE,
    financial_committee: List[str] = None,
    technical_committee: List[str] = None,
) -> Requisition:
    return Requisition(
        id="req-1",
        title="Office laptops",
        status=status,
        items=[RequisitionItem(id=i, name=f"Item {i}", quantity=10, unit_price=100) for i in item_ids],
        evaluation_criteria=criteria(),
        rfq_settings=RFQSettings(award_strategy=strategy),
        financial_committee_ids=financial_committee or [],
        technical_committee_ids=technical_committee or [],
        deadline=NOW - timedelta(days=2),
        created_at=NOW - timedelta(days=10),
        updated_at=NOW - timedelta(days=1),
    )


def make_quotation(
    requisition: Requisition,
    vendor_id: str,
    score: float = 0.0,
    offset_minutes: int = 0,
    status: QuotationStatus = QuotationStatus.SUBMITTED,
) -> Quotation:
    """Single-strategy quotation bidding on every item, with a preset final score."""
    return Quotation(
        id=f"q-{vendor_id}",
        requisition_id=requisition.id,
        vendor_id=vendor_id,
        vendor_name=vendor_id.upper(),
        status=status,
        items=[
            QuoteItem(id=f"{vendor_id}-{item.id}", requisition_item_id=item.id, name=item.name, quantity=10, unit_price=90)
            for item in requisition.items
        ],
        final_average_score=score,
        created_at=NOW - timedelta(days=3) + timedelta(minutes=offset_minutes),
    )


def make_item_quotation(
    requisition: Requisition,
    vendor_id: str,
    item_scores: Dict[str, float],
    offset_minutes: int = 0,
) -> Quotation:
    """Per-item quotation whose proposals carry one committee score each."""
    quote = Quotation(
        id=f"q-{vendor_id}",
        requisition_id=requisition.id,
        vendor_id=vendor_id,
        vendor_name=vendor_id.upper(),
        items=[
            QuoteItem(id=f"{vendor_id}-{item_id}", requisition_item_id=item_id, name=item_id, quantity=10, unit_price=90)
            for item_id in item_scores
        ],
        created_at=NOW - timedelta(days=3) + timedelta(minutes=offset_minutes),
    )
    quote.scores = [CommitteeScoreSet(
        scorer_id="m1",
        item_scores=[
            ItemScore(quote_item_id=f"{vendor_id}-{item_id}", final_score=value)
            for item_id, value in item_scores.items()
        ],
    )]
    return quote
