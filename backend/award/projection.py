"""
Read-side projections over award state.

The overall status of a quotation under the per-item strategy is never
stored independently; it is recomputed from the per-item award details.
"""
from typing import Dict, List, Optional, Union

from backend.award.models import PerItemAwardDetail, Quotation, Requisition, RequisitionItem
from shared.constants import AwardItemStatus, AwardStrategy, QuotationStatus

AwardTarget = Union[Quotation, PerItemAwardDetail]

# States that occupy a scope's single award slot
OPEN_STATES = {"Pending_Award", "Awarded"}
HELD_STATES = OPEN_STATES | {"Accepted"}

_CLOSED_ITEM_STATES = {
    AwardItemStatus.REJECTED,
    AwardItemStatus.FAILED_TO_AWARD,
    AwardItemStatus.RESTARTED,
}

# Per-item states that can still end in (or already are) an award
LIVE_ITEM_STATES = {
    AwardItemStatus.PENDING_AWARD,
    AwardItemStatus.AWARDED,
    AwardItemStatus.STANDBY,
    AwardItemStatus.ACCEPTED,
}


def _status_value(target: AwardTarget) -> str:
    return target.status.value


def derive_item_quotation_status(details: List[PerItemAwardDetail]) -> QuotationStatus:
    """Overall quotation status from one vendor's per-item award details."""
    statuses = {d.status for d in details}

    if AwardItemStatus.ACCEPTED in statuses:
        return QuotationStatus.ACCEPTED
    if statuses & {AwardItemStatus.AWARDED, AwardItemStatus.PENDING_AWARD}:
        return QuotationStatus.PARTIALLY_AWARDED
    if AwardItemStatus.STANDBY in statuses:
        return QuotationStatus.STANDBY
    if AwardItemStatus.DECLINED in statuses:
        return QuotationStatus.DECLINED
    if details and statuses <= _CLOSED_ITEM_STATES:
        return QuotationStatus.REJECTED
    return QuotationStatus.SUBMITTED


def item_open_for_tender(item: RequisitionItem) -> bool:
    """True while an item has never been awarded or its last round was restarted."""
    return all(d.status == AwardItemStatus.RESTARTED for d in item.per_item_award_details)


def open_item_ids(requisition: Requisition) -> List[str]:
    return [item.id for item in requisition.items if item_open_for_tender(item)]


def details_by_quotation(requisition: Requisition) -> Dict[str, List[PerItemAwardDetail]]:
    grouped: Dict[str, List[PerItemAwardDetail]] = {}
    for item in requisition.items:
        for detail in item.per_item_award_details:
            grouped.setdefault(detail.quotation_id, []).append(detail)
    return grouped


def quotation_status(requisition: Requisition, quotation: Quotation) -> QuotationStatus:
    """Status to show for ``quotation``, derived under the per-item strategy."""
    if requisition.strategy != AwardStrategy.ITEM:
        return quotation.status
    # Restarted rounds are history; a resubmitted quotation shows its stored status
    details = [
        d for d in details_by_quotation(requisition).get(quotation.id, [])
        if d.status != AwardItemStatus.RESTARTED
    ]
    if not details:
        return quotation.status
    return derive_item_quotation_status(details)


def project_quotations(requisition: Requisition, quotations: List[Quotation]) -> List[Quotation]:
    """Copies of ``quotations`` carrying their projected status."""
    projected = []
    for quote in quotations:
        copy = quote.model_copy(deep=True)
        copy.status = quotation_status(requisition, quote)
        projected.append(copy)
    return projected


# ============================================================
# SCOPES
# ============================================================

def scopes(requisition: Requisition, quotations: List[Quotation]) -> Dict[str, List[AwardTarget]]:
    """
    Award scopes and their candidates.

    Under ``all`` there is one scope (the requisition) whose candidates are
    the quotations. Under ``item`` each requisition item is a scope.
    """
    if requisition.strategy == AwardStrategy.ITEM:
        return {item.id: list(item.per_item_award_details) for item in requisition.items}
    return {requisition.id: list(quotations)}


def held_targets(candidates: List[AwardTarget]) -> List[AwardTarget]:
    return [c for c in candidates if _status_value(c) in HELD_STATES]


def open_target(candidates: List[AwardTarget]) -> Optional[AwardTarget]:
    for candidate in candidates:
        if _status_value(candidate) in OPEN_STATES:
            return candidate
    return None


def scope_violations(requisition: Requisition, quotations: List[Quotation]) -> List[str]:
    """Scope ids holding more than one open or accepted target."""
    return [
        scope_id for scope_id, candidates in scopes(requisition, quotations).items()
        if len(held_targets(candidates)) > 1
    ]
