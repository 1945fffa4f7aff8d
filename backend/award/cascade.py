"""
Response and decline cascade.

A vendor accepts or declines a Pending_Award target. A decline (explicit or
through an expired response deadline) promotes the next-ranked standby in the
same scope; when no standby is left the scope fails to award.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from backend.award.errors import ConcurrencyConflict, InvalidTransition, NotFound, ValidationError
from backend.award.models import PerItemAwardDetail, Quotation, Requisition, RequisitionItem
from backend.award.projection import LIVE_ITEM_STATES, scope_violations
from backend.award.status_machine import StatusMachine
from shared.constants import (
    AwardAction, AwardItemStatus, AwardStrategy, CascadeOutcome, DEADLINE_PASSED_REASON,
    QuotationStatus, RequisitionStatus
)

logger = logging.getLogger(__name__)

RESTART_RFQ_ACTION = "restart_rfq"
RESTART_ITEM_RFQ_ACTION = "restart_item_rfq"


@dataclass
class VendorNotice:
    vendor_id: str
    payload: Dict[str, Any]


@dataclass
class CascadeResult:
    """Outcome of one accept/decline and the promotion it triggered."""
    outcome: CascadeOutcome
    target_id: str
    requisition: Requisition
    quotations: List[Quotation]
    scope_id: str
    promoted_target_id: Optional[str] = None
    reason: Optional[str] = None
    recovery_action: Optional[str] = None
    notifications: List[VendorNotice] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.outcome == CascadeOutcome.ACCEPTED:
            return "Award accepted."
        if self.outcome == CascadeOutcome.PROMOTED:
            return "Award declined. The next standby vendor has been promoted."
        return "Award declined and no standby vendors remain. The RFQ can be restarted."


def _next_deadline(requisition: Requisition, now: datetime) -> Optional[datetime]:
    if requisition.award_response_duration_minutes:
        return now + timedelta(minutes=requisition.award_response_duration_minutes)
    return None


def _find_target(
    requisition: Requisition,
    quotations: List[Quotation],
    target_id: str
) -> Tuple[Any, Optional[RequisitionItem]]:
    if requisition.strategy == AwardStrategy.ITEM:
        for item in requisition.items:
            for detail in item.per_item_award_details:
                if detail.id == target_id:
                    return detail, item
    else:
        for quote in quotations:
            if quote.id == target_id:
                return quote, None
    raise NotFound(f"Award target {target_id} not found", requisition.id)


def award_notice(requisition: Requisition, target: Any) -> VendorNotice:
    payload = {
        "event": "award_offered",
        "requisition_id": requisition.id,
        "requisition_title": requisition.title,
        "target_id": target.id,
        "response_deadline": target.response_deadline.isoformat() if target.response_deadline else None,
    }
    if isinstance(target, PerItemAwardDetail):
        payload["requisition_item_id"] = target.requisition_item_id
    return VendorNotice(vendor_id=target.vendor_id, payload=payload)


def item_failed(item: RequisitionItem) -> bool:
    """An item fails once no detail can still end in an award (or it never had candidates)."""
    return not any(d.status in LIVE_ITEM_STATES for d in item.per_item_award_details)


def _promote_all(
    requisition: Requisition,
    quotations: List[Quotation],
    now: datetime
) -> Optional[Quotation]:
    standbys = sorted(
        (q for q in quotations if q.status == QuotationStatus.STANDBY),
        key=lambda q: q.rank if q.rank is not None else float("inf"),
    )
    if not standbys:
        StatusMachine.transition(requisition, RequisitionStatus.AWARD_DECLINED, now)
        return None
    promoted = standbys[0]
    promoted.status = QuotationStatus.PENDING_AWARD
    promoted.response_deadline = _next_deadline(requisition, now)
    return promoted


def _promote_item(
    requisition: Requisition,
    item: RequisitionItem,
    now: datetime
) -> Optional[PerItemAwardDetail]:
    standbys = sorted(
        (d for d in item.per_item_award_details if d.status == AwardItemStatus.STANDBY),
        key=lambda d: d.rank,
    )
    if not standbys:
        for detail in item.per_item_award_details:
            if detail.status not in (AwardItemStatus.ACCEPTED, AwardItemStatus.RESTARTED):
                detail.status = AwardItemStatus.FAILED_TO_AWARD
                detail.response_deadline = None
        if all(item_failed(i) for i in requisition.items):
            StatusMachine.transition(requisition, RequisitionStatus.AWARD_DECLINED, now)
        return None
    promoted = standbys[0]
    promoted.status = AwardItemStatus.PENDING_AWARD
    promoted.response_deadline = _next_deadline(requisition, now)
    return promoted


def respond(
    requisition: Requisition,
    quotations: List[Quotation],
    target_id: str,
    action: AwardAction,
    now: datetime,
    reason: Optional[str] = None
) -> CascadeResult:
    """
    Apply a vendor's accept/decline to a Pending_Award target.

    Returns the updated copies; the inputs are left untouched.
    """
    try:
        action = AwardAction(action)
    except ValueError:
        raise ValidationError(f"Invalid action: {action}", requisition.id)

    if requisition.status != RequisitionStatus.AWARDED:
        raise InvalidTransition(
            f"Cannot respond to an award while requisition is {requisition.status.value}",
            requisition.id,
        )

    updated_req = requisition.model_copy(deep=True)
    updated_quotes = [q.model_copy(deep=True) for q in quotations]
    target, item = _find_target(updated_req, updated_quotes, target_id)
    scope_id = item.id if item is not None else updated_req.id

    if target.status.value != "Pending_Award":
        raise InvalidTransition(
            f"Award target {target_id} is {target.status.value}, not Pending_Award",
            requisition.id,
        )

    if action == AwardAction.ACCEPT:
        target.status = AwardItemStatus.ACCEPTED if item is not None else QuotationStatus.ACCEPTED
        target.response_deadline = None
        result = CascadeResult(
            outcome=CascadeOutcome.ACCEPTED,
            target_id=target_id,
            requisition=updated_req,
            quotations=updated_quotes,
            scope_id=scope_id,
        )
        logger.info("[Cascade] %s accepted award target %s", target.vendor_id, target_id)
    else:
        target.status = AwardItemStatus.DECLINED if item is not None else QuotationStatus.DECLINED
        target.decline_reason = reason
        target.response_deadline = None
        logger.info(
            "[Cascade] %s declined award target %s (%s)",
            target.vendor_id, target_id, reason or "no reason given",
        )

        if item is not None:
            promoted = _promote_item(updated_req, item, now)
        else:
            promoted = _promote_all(updated_req, updated_quotes, now)

        if promoted is not None:
            result = CascadeResult(
                outcome=CascadeOutcome.PROMOTED,
                target_id=target_id,
                requisition=updated_req,
                quotations=updated_quotes,
                scope_id=scope_id,
                promoted_target_id=promoted.id,
                reason=reason,
                notifications=[award_notice(updated_req, promoted)],
            )
            logger.info("[Cascade] Promoted standby %s (%s) in scope %s", promoted.id, promoted.vendor_id, scope_id)
        else:
            result = CascadeResult(
                outcome=CascadeOutcome.FAILED_TO_AWARD,
                target_id=target_id,
                requisition=updated_req,
                quotations=updated_quotes,
                scope_id=scope_id,
                reason=reason,
                recovery_action=RESTART_ITEM_RFQ_ACTION if item is not None else RESTART_RFQ_ACTION,
            )
            logger.warning("[Cascade] Scope %s failed to award: no standby left", scope_id)

    violations = scope_violations(updated_req, updated_quotes)
    if violations:
        raise ConcurrencyConflict(
            f"More than one active award in scope(s) {violations}", requisition.id
        )
    return result


def expired_targets(requisition: Requisition, quotations: List[Quotation], now: datetime) -> List[str]:
    """Ids of Pending_Award targets whose response deadline has passed."""
    if requisition.status != RequisitionStatus.AWARDED:
        return []
    if requisition.strategy == AwardStrategy.ITEM:
        candidates = [d for item in requisition.items for d in item.per_item_award_details]
    else:
        candidates = list(quotations)
    return [
        c.id for c in candidates
        if c.status.value == "Pending_Award"
        and c.response_deadline is not None
        and now > c.response_deadline
    ]


def expire_if_past_deadline(
    requisition: Requisition,
    quotations: List[Quotation],
    now: datetime
) -> List[CascadeResult]:
    """
    Auto-decline every Pending_Award target past its response deadline.

    An empty list means nothing was due; calling again after the state
    advanced is therefore a no-op.
    """
    results = []
    for target_id in expired_targets(requisition, quotations, now):
        # An earlier decline may have exhausted the requisition
        if requisition.status != RequisitionStatus.AWARDED:
            break
        result = respond(
            requisition, quotations, target_id, AwardAction.REJECT, now,
            reason=DEADLINE_PASSED_REASON,
        )
        results.append(result)
        requisition, quotations = result.requisition, result.quotations
    return results
