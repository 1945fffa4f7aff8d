"""
Award finalizer.

Ranks scored quotations (single-vendor strategy) or per-item proposals
(per-item strategy) and assigns Pending_Award / Standby / Rejected.
Under the per-item strategy only items open for tender are ranked, so a
re-tender after a restarted item keeps the awards already settled.
Works on copies; the caller persists the returned records.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, Field

from backend.award.errors import PreconditionNotMet, ValidationError
from backend.award.models import PerItemAwardDetail, Quotation, Requisition
from backend.award.projection import open_item_ids
from backend.award.scoring import proposal_scores
from backend.award.status_machine import StatusMachine
from backend.config import AwardSettings
from shared.constants import (
    AwardItemStatus, AwardStrategy, QuotationStatus, RequisitionStatus
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AwardSelection(BaseModel):
    """Optional reviewer overrides of the score-based winner."""
    vendor_id: Optional[str] = None
    item_winners: Dict[str, str] = Field(default_factory=dict)  # requisition item id -> quote item id


@dataclass
class FinalizeOutcome:
    """Updated award state produced by ``finalize``."""
    requisition: Requisition
    quotations: List[Quotation]
    pending_targets: List[str] = field(default_factory=list)


def rank_by_score(
    candidates: Iterable[T],
    score_of: Callable[[T], float],
    created_of: Callable[[T], datetime],
    forced: Optional[Callable[[T], bool]] = None
) -> List[T]:
    """
    Order candidates best first.

    Higher score wins; on equal scores the earlier submission wins, and the
    input order settles anything still tied. A ``forced`` candidate is moved
    to the front without disturbing the order of the rest.
    """
    ordered = sorted(candidates, key=lambda c: (-score_of(c), created_of(c)))
    if forced is not None:
        head = [c for c in ordered if forced(c)]
        ordered = head[:1] + [c for c in ordered if c not in head[:1]]
    return ordered


def _resolve_response_window(
    award_response_deadline: Optional[datetime],
    settings: AwardSettings,
    now: datetime
) -> Tuple[Optional[datetime], Optional[int]]:
    if award_response_deadline is not None:
        if award_response_deadline <= now:
            raise ValidationError("The award response deadline must be in the future.")
        minutes = math.ceil((award_response_deadline - now).total_seconds() / 60)
        return award_response_deadline, minutes
    if settings.default_award_response_minutes:
        minutes = settings.default_award_response_minutes
        return now + timedelta(minutes=minutes), minutes
    return None, None


def _award_pool(quotations: List[Quotation]) -> List[Quotation]:
    """Quotations still in the running: declined and invalidated bids are out."""
    return [q for q in quotations if q.status == QuotationStatus.SUBMITTED]


def _finalize_all(
    requisition: Requisition,
    quotations: List[Quotation],
    selection: AwardSelection,
    deadline: Optional[datetime],
    settings: AwardSettings
) -> List[str]:
    pool = _award_pool(quotations)
    if selection.vendor_id and selection.vendor_id not in {q.vendor_id for q in pool}:
        raise ValidationError(
            f"Vendor {selection.vendor_id} has no quotation eligible for award.",
            requisition.id,
        )

    ordered = rank_by_score(
        pool,
        score_of=lambda q: q.final_average_score,
        created_of=lambda q: q.created_at,
        forced=(lambda q: q.vendor_id == selection.vendor_id) if selection.vendor_id else None,
    )

    pending = []
    for index, quote in enumerate(ordered):
        rank = index + 1
        if rank == 1:
            quote.status = QuotationStatus.PENDING_AWARD
            quote.rank = rank
            quote.response_deadline = deadline
            pending.append(quote.id)
        elif rank <= 1 + settings.standby_count_all:
            quote.status = QuotationStatus.STANDBY
            quote.rank = rank
            quote.response_deadline = None
        else:
            quote.status = QuotationStatus.REJECTED
            quote.rank = None
            quote.response_deadline = None
    return pending


def _finalize_items(
    requisition: Requisition,
    quotations: List[Quotation],
    selection: AwardSelection,
    deadline: Optional[datetime],
    settings: AwardSettings,
    now: datetime
) -> List[str]:
    if selection.vendor_id:
        raise ValidationError(
            "A single winning vendor cannot be chosen under the per-item strategy.",
            requisition.id,
        )
    unknown = set(selection.item_winners) - {item.id for item in requisition.items}
    if unknown:
        raise ValidationError(f"Unknown requisition items in award: {sorted(unknown)}", requisition.id)
    open_ids = open_item_ids(requisition)
    settled = set(selection.item_winners) - set(open_ids)
    if settled:
        raise ValidationError(f"Items already awarded in an earlier round: {sorted(settled)}", requisition.id)

    pool = _award_pool(quotations)
    averages = proposal_scores(pool)

    pending = []
    for item in requisition.items:
        if item.id not in open_ids:
            continue
        # Proposals already ranked in a restarted round do not compete again
        history = list(item.per_item_award_details)
        ranked_before = {d.quote_item_id for d in history}
        candidates = [
            (quote, quote_item)
            for quote in pool
            for quote_item in quote.items
            if quote_item.requisition_item_id == item.id and quote_item.id not in ranked_before
        ]
        forced_id = selection.item_winners.get(item.id)
        if forced_id and forced_id not in {qi.id for _, qi in candidates}:
            raise ValidationError(
                f"Proposal {forced_id} is not a candidate for item {item.name}.",
                requisition.id,
            )

        ordered = rank_by_score(
            candidates,
            score_of=lambda c: averages.get(c[1].id, 0.0),
            created_of=lambda c: c[0].created_at,
            forced=(lambda c: c[1].id == forced_id) if forced_id else None,
        )

        details = []
        for index, (quote, quote_item) in enumerate(ordered):
            rank = index + 1
            if rank == 1:
                status = AwardItemStatus.PENDING_AWARD
            elif rank <= 1 + settings.standby_count_item:
                status = AwardItemStatus.STANDBY
            else:
                status = AwardItemStatus.REJECTED
            detail = PerItemAwardDetail(
                requisition_item_id=item.id,
                quotation_id=quote.id,
                quote_item_id=quote_item.id,
                vendor_id=quote.vendor_id,
                vendor_name=quote.vendor_name,
                rank=rank,
                status=status,
                score=averages.get(quote_item.id, 0.0),
                response_deadline=deadline if rank == 1 else None,
                created_at=now,
            )
            if rank == 1:
                pending.append(detail.id)
            details.append(detail)
        item.per_item_award_details = history + details

    if not pending:
        raise PreconditionNotMet("No proposals are eligible for the open items.", requisition.id)

    # Overall quotation status is projected from the details on read
    for quote in pool:
        quote.rank = None
    return pending


def finalize(
    requisition: Requisition,
    quotations: List[Quotation],
    submitted_scorer_ids: Iterable[str],
    settings: AwardSettings,
    now: datetime,
    selection: Optional[AwardSelection] = None,
    award_response_deadline: Optional[datetime] = None
) -> FinalizeOutcome:
    """
    Finalize the award for a scored requisition.

    ``quotations`` must already carry aggregated scores. Raises
    PreconditionNotMet / InvalidTransition / ValidationError without
    touching the inputs.
    """
    StatusMachine.check_finalize(requisition, submitted_scorer_ids)
    selection = selection or AwardSelection()

    updated_req = requisition.model_copy(deep=True)
    updated_quotes = [q.model_copy(deep=True) for q in quotations]

    if not _award_pool(updated_quotes):
        raise PreconditionNotMet("No quotations are eligible for award.", requisition.id)

    deadline, minutes = _resolve_response_window(award_response_deadline, settings, now)

    if updated_req.strategy == AwardStrategy.ITEM:
        pending = _finalize_items(updated_req, updated_quotes, selection, deadline, settings, now)
    else:
        pending = _finalize_all(updated_req, updated_quotes, selection, deadline, settings)

    updated_req.award_response_deadline = deadline
    updated_req.award_response_duration_minutes = minutes
    StatusMachine.transition(updated_req, RequisitionStatus.AWARDED, now)

    logger.info(
        "[Finalizer] Requisition %s awarded (%s strategy), %d target(s) pending response",
        updated_req.id, updated_req.strategy.value, len(pending),
    )
    return FinalizeOutcome(
        requisition=updated_req,
        quotations=updated_quotes,
        pending_targets=pending,
    )
