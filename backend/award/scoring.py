"""
Scoring aggregator.

Turns committee score sets into per-proposal averages, per-item champion
scores and each vendor's ``final_average_score``. Everything here is pure:
inputs are never mutated, updated copies are returned.
"""
import logging
from collections import defaultdict
from typing import Dict, List

from backend.award.errors import ValidationError
from backend.award.models import (
    CommitteeScoreSet, EvaluationCriteria, ItemScore, Quotation, RequisitionItem
)
from shared.constants import MAX_SCORE, MIN_SCORE, ScoreType

logger = logging.getLogger(__name__)


def compute_item_score(item_score: ItemScore, criteria: EvaluationCriteria) -> float:
    """
    Weighted score of one scorer's scores for one proposal.

    Each score contributes ``score * criterion weight/100 * group weight/100``.
    Scores for criteria the requisition does not define are ignored; a
    criterion scored twice in one item score is rejected.
    """
    weights = {}
    for criterion in criteria.financial_criteria:
        weights[criterion.id] = (ScoreType.FINANCIAL, criterion.weight)
    for criterion in criteria.technical_criteria:
        weights[criterion.id] = (ScoreType.TECHNICAL, criterion.weight)

    total = 0.0
    seen = set()
    for score in item_score.scores:
        if score.criterion_id in seen:
            raise ValidationError(
                f"Criterion {score.criterion_id} scored twice for proposal {item_score.quote_item_id}."
            )
        seen.add(score.criterion_id)
        if score.score < MIN_SCORE or score.score > MAX_SCORE:
            raise ValidationError(
                f"Score {score.score} for criterion {score.criterion_id} is outside "
                f"{MIN_SCORE:.0f}-{MAX_SCORE:.0f}."
            )
        if score.criterion_id not in weights:
            continue
        score_type, weight = weights[score.criterion_id]
        group_weight = (
            criteria.financial_weight if score_type == ScoreType.FINANCIAL
            else criteria.technical_weight
        )
        total += score.score * (weight / 100.0) * (group_weight / 100.0)
    return total


def score_set_final(score_set: CommitteeScoreSet) -> float:
    """Mean of a score set's item final scores."""
    if not score_set.item_scores:
        return 0.0
    return sum(i.final_score for i in score_set.item_scores) / len(score_set.item_scores)


def apply_criteria(score_set: CommitteeScoreSet, criteria: EvaluationCriteria) -> CommitteeScoreSet:
    """Return a copy of ``score_set`` with item and overall final scores filled in."""
    scored = score_set.model_copy(deep=True)
    for item_score in scored.item_scores:
        item_score.final_score = compute_item_score(item_score, criteria)
    scored.final_score = score_set_final(scored)
    return scored


def proposal_scores(quotations: List[Quotation]) -> Dict[str, float]:
    """
    Average item score per proposal (quote item id).

    A proposal nobody scored yet averages 0.
    """
    collected: Dict[str, List[float]] = defaultdict(list)
    for quote in quotations:
        for score_set in quote.scores:
            for item_score in score_set.item_scores:
                collected[item_score.quote_item_id].append(item_score.final_score)

    averages = {}
    for quote in quotations:
        for item in quote.items:
            values = collected.get(item.id, [])
            averages[item.id] = sum(values) / len(values) if values else 0.0
    return averages


def champion_scores(
    requisition_items: List[RequisitionItem],
    quotations: List[Quotation]
) -> Dict[str, Dict[str, float]]:
    """
    Best average per vendor per requisition item.

    Returns ``{vendor_id: {requisition_item_id: champion_score}}`` covering
    only the items each vendor actually bid on.
    """
    averages = proposal_scores(quotations)
    item_ids = {item.id for item in requisition_items}

    champions: Dict[str, Dict[str, float]] = defaultdict(dict)
    for quote in quotations:
        for quote_item in quote.items:
            if quote_item.requisition_item_id not in item_ids:
                continue
            score = averages.get(quote_item.id, 0.0)
            current = champions[quote.vendor_id].get(quote_item.requisition_item_id)
            if current is None or score > current:
                champions[quote.vendor_id][quote_item.requisition_item_id] = score
    return dict(champions)


def aggregate(
    requisition_items: List[RequisitionItem],
    quotations: List[Quotation],
    criteria: EvaluationCriteria
) -> List[Quotation]:
    """Return copies of ``quotations`` with ``final_average_score`` recomputed."""
    updated = [q.model_copy(deep=True) for q in quotations]

    if criteria.is_empty():
        for quote in updated:
            quote.final_average_score = 0.0
        return updated

    champions = champion_scores(requisition_items, updated)
    for quote in updated:
        vendor_champions = champions.get(quote.vendor_id, {})
        if vendor_champions:
            quote.final_average_score = sum(vendor_champions.values()) / len(vendor_champions)
        else:
            quote.final_average_score = 0.0

    logger.debug(
        "[Scoring] Aggregated %d quotations: %s",
        len(updated),
        {q.vendor_id: round(q.final_average_score, 2) for q in updated},
    )
    return updated
