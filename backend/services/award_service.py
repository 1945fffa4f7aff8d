"""
Award service.

Finalizes awards, applies vendor responses and the decline cascade,
auto-declines expired offers, and carries an approved award through
purchase orders and contracts to closure.

Every mutating entry point follows the same unit of work: authorize, take
the requisition's lock, load, run the award core, save with a version check
(retried once on conflict), then notify vendors best-effort.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from backend.award.cascade import (
    CascadeResult, VendorNotice, award_notice, expire_if_past_deadline, respond
)
from backend.award.errors import InvalidTransition, NotFound, PreconditionNotMet, Unauthorized, ValidationError
from backend.award.finalizer import AwardSelection, FinalizeOutcome, finalize
from backend.award.models import Actor, Contract, PurchaseOrder, Quotation, QuoteItem, Requisition
from backend.award.projection import project_quotations
from backend.award.scoring import aggregate
from backend.award.status_machine import StatusMachine
from backend.persistence.models import AuditLog
from backend.persistence.repository import audit_entry
from backend.services.authorization import SYSTEM_ACTOR
from backend.services.base_service import BaseService
from shared.constants import (
    CONTRACT_STAGES, AwardAction, AwardItemStatus, AwardStrategy, CascadeOutcome, PurchaseOrderStatus,
    QuotationStatus, RequisitionAction as A, RequisitionStatus as S, UserRole
)
from shared.schemas import RequisitionView
from shared.stage_prereqs import allowed_actions, get_stage_description

logger = logging.getLogger(__name__)

ApprovalGate = Callable[[Requisition], bool]


def _approval_complete(requisition: Requisition) -> bool:
    """Default gate: the approver's call is the end of the chain."""
    return True


def _cascade_audit(actor: Actor, result: CascadeResult) -> List[AuditLog]:
    req_id = result.requisition.id
    if result.outcome == CascadeOutcome.ACCEPTED:
        return [audit_entry(
            actor.user_id, "ACCEPT_AWARD", "AwardTarget", result.target_id,
            f"Award accepted in scope {result.scope_id}", req_id,
        )]
    entries = [audit_entry(
        actor.user_id, "DECLINE_AWARD", "AwardTarget", result.target_id,
        f"Award declined in scope {result.scope_id}: {result.reason or 'no reason given'}", req_id,
    )]
    if result.outcome == CascadeOutcome.PROMOTED:
        entries.append(audit_entry(
            "system", "PROMOTE_STANDBY", "AwardTarget", result.promoted_target_id,
            f"Standby promoted in scope {result.scope_id}", req_id,
        ))
    else:
        entries.append(audit_entry(
            "system", "FAILED_TO_AWARD", "Requisition", req_id,
            f"No standby left in scope {result.scope_id}; requisition is {result.requisition.status.value}",
            req_id,
        ))
    return entries


class AwardService(BaseService):
    """
    Service for the award phase of a requisition.

    The approval chain is external; ``approval_gate`` reports whether it
    has completed for a requisition.
    """

    def __init__(self, approval_gate: Optional[ApprovalGate] = None, **kwargs):
        super().__init__(**kwargs)
        self.approval_gate = approval_gate or _approval_complete

    # ============================================================
    # READ
    # ============================================================

    def get_requisition(self, requisition_id: str, now: Optional[datetime] = None) -> RequisitionView:
        """
        Current view of a requisition.

        Overdue award offers are declined before the view is built, so a
        reader never sees an offer past its deadline as still pending.
        """
        self.expire_if_past_deadline(requisition_id, now=now)
        requisition = self.repository.load_requisition(requisition_id)
        quotations = self.repository.load_quotations(requisition_id)
        return RequisitionView(
            requisition=requisition,
            quotations=project_quotations(requisition, quotations),
            purchase_orders=self.repository.load_purchase_orders(requisition_id),
            allowed_actions=allowed_actions(requisition.status),
            stage_description=get_stage_description(requisition.status),
        )

    def list_requisitions(
        self,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Requisition]:
        return self.repository.list_requisitions(status=status, limit=limit, offset=offset)

    def audit_trail(self, requisition_id: str) -> List[AuditLog]:
        self.repository.load_requisition(requisition_id)
        return self.repository.list_audit(requisition_id)

    # ============================================================
    # FINALIZE
    # ============================================================

    def finalize_award(
        self,
        actor: Actor,
        requisition_id: str,
        selection: Optional[AwardSelection] = None,
        award_response_deadline: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> RequisitionView:
        """Rank the scored quotations and offer the award to the winner(s)."""
        self._authorize(actor, A.FINALIZE_AWARD, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        award_response_deadline = self._as_local(award_response_deadline)

        def work() -> FinalizeOutcome:
            requisition = self.repository.load_requisition(requisition_id)
            quotations = aggregate(
                requisition.items,
                self.repository.load_quotations(requisition_id),
                requisition.evaluation_criteria,
            )
            outcome = finalize(
                requisition,
                quotations,
                self.repository.submitted_scorer_ids(requisition_id),
                self.settings,
                now,
                selection=selection,
                award_response_deadline=award_response_deadline,
            )
            outcome.requisition.version = self.repository.save_award_state(
                outcome.requisition,
                outcome.quotations,
                audit=[audit_entry(
                    actor.user_id, "FINALIZE_AWARD", "Requisition", requisition_id,
                    f"Award finalized ({outcome.requisition.strategy.value} strategy), "
                    f"{len(outcome.pending_targets)} offer(s) sent",
                    requisition_id,
                )],
            )
            return outcome

        outcome = self.locks.run(requisition_id, work)
        self._notify(self._offer_notices(outcome))
        return RequisitionView(
            requisition=outcome.requisition,
            quotations=project_quotations(outcome.requisition, outcome.quotations),
            allowed_actions=allowed_actions(outcome.requisition.status),
            stage_description=get_stage_description(outcome.requisition.status),
        )

    @staticmethod
    def _offer_notices(outcome: FinalizeOutcome) -> List[VendorNotice]:
        requisition = outcome.requisition
        pending = set(outcome.pending_targets)
        if requisition.strategy == AwardStrategy.ITEM:
            targets = [d for item in requisition.items for d in item.per_item_award_details if d.id in pending]
        else:
            targets = [q for q in outcome.quotations if q.id in pending]

        return [award_notice(requisition, target) for target in targets]

    # ============================================================
    # RESPONSES AND EXPIRY
    # ============================================================

    def respond(
        self,
        actor: Actor,
        requisition_id: str,
        target_id: str,
        action: AwardAction,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CascadeResult:
        """
        Apply a vendor's accept/decline.

        ``target_id`` is the quotation id under the ``all`` strategy and the
        per-item award detail id under ``item``. Offers already past their
        deadline are expired first and can no longer be answered.
        """
        self._authorize(actor, A.RESPOND_AWARD, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        self.expire_if_past_deadline(requisition_id, now=now)

        def work() -> CascadeResult:
            requisition = self.repository.load_requisition(requisition_id)
            quotations = self.repository.load_quotations(requisition_id)
            self._check_owner(actor, requisition, quotations, target_id)

            result = respond(requisition, quotations, target_id, action, now, reason=reason)
            result.requisition.version = self.repository.save_award_state(
                result.requisition, result.quotations, audit=_cascade_audit(actor, result),
            )
            return result

        result = self.locks.run(requisition_id, work)
        self._notify(result.notifications)
        logger.info(
            "[AwardService] %s on %s: %s", actor.user_id, target_id, result.outcome.value,
        )
        return result

    @staticmethod
    def _check_owner(actor: Actor, requisition: Requisition, quotations: List[Quotation], target_id: str) -> None:
        if actor.role != UserRole.VENDOR:
            return
        if requisition.strategy == AwardStrategy.ITEM:
            target = requisition.find_detail(target_id)
        else:
            target = next((q for q in quotations if q.id == target_id), None)
        if target is None:
            raise NotFound(f"Award target {target_id} not found", requisition.id)
        if target.vendor_id != actor.vendor_id:
            raise Unauthorized(f"Award target {target_id} belongs to another vendor.", requisition.id)

    def expire_if_past_deadline(
        self,
        requisition_id: str,
        actor: Actor = SYSTEM_ACTOR,
        now: Optional[datetime] = None
    ) -> List[CascadeResult]:
        """
        Auto-decline overdue Pending_Award offers for one requisition.

        Idempotent: once nothing is overdue the call changes nothing.
        """
        requisition = self.repository.load_requisition(requisition_id)
        self._authorize(actor, A.EXPIRE_AWARDS, requisition)
        now = self._now(now)
        if requisition.status != S.AWARDED:
            return []

        def work() -> List[CascadeResult]:
            requisition = self.repository.load_requisition(requisition_id)
            quotations = self.repository.load_quotations(requisition_id)
            results = expire_if_past_deadline(requisition, quotations, now)
            if not results:
                return []
            final = results[-1]
            final.requisition.version = self.repository.save_award_state(
                final.requisition,
                final.quotations,
                audit=[e for r in results for e in _cascade_audit(actor, r)],
            )
            logger.info(
                "[AwardService] Expired %d overdue offer(s) on %s", len(results), requisition_id,
            )
            return results

        results = self.locks.run(requisition_id, work)
        for result in results:
            self._notify(result.notifications)
        return results

    def sweep_expired_awards(self, now: Optional[datetime] = None) -> int:
        """Expire overdue offers on every Awarded requisition. Returns how many were declined."""
        now = self._now(now)
        expired = 0
        for requisition_id in self.repository.requisition_ids(status=S.AWARDED.value):
            expired += len(self.expire_if_past_deadline(requisition_id, now=now))
        if expired:
            logger.info("[AwardService] Deadline sweep declined %d offer(s)", expired)
        return expired

    # ============================================================
    # APPROVAL, PURCHASE ORDERS, CLOSURE
    # ============================================================

    def record_approval(
        self,
        actor: Actor,
        requisition_id: str,
        comment: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Requisition:
        """Awarded -> PostApproved once every scope is settled and the chain is done."""
        self._authorize(actor, A.APPROVE_AWARD, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        self.expire_if_past_deadline(requisition_id, now=now)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_transition(requisition, S.POST_APPROVED)
            quotations = self.repository.load_quotations(requisition_id)
            ok, reason = StatusMachine.can_post_approve(
                requisition, quotations, self.approval_gate(requisition)
            )
            if not ok:
                raise PreconditionNotMet(reason, requisition_id)

            updated = requisition.model_copy(deep=True)
            StatusMachine.transition(updated, S.POST_APPROVED, now)
            updated.version = self.repository.save_award_state(
                updated,
                audit=[audit_entry(
                    actor.user_id, "APPROVE_AWARD", "Requisition", requisition_id,
                    comment or "Award approved", requisition_id,
                )],
            )
            logger.info("[AwardService] Award approved for %s", requisition_id)
            return updated

        return self.locks.run(requisition_id, work)

    def create_purchase_orders(
        self,
        actor: Actor,
        requisition_id: str,
        now: Optional[datetime] = None
    ) -> List[PurchaseOrder]:
        """PostApproved -> PO_Created: one purchase order per accepting vendor."""
        self._authorize(actor, A.CREATE_PURCHASE_ORDERS, self.repository.load_requisition(requisition_id))
        now = self._now(now)

        def work() -> List[PurchaseOrder]:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_transition(requisition, S.PO_CREATED)
            orders = self._build_purchase_orders(requisition, self.repository.load_quotations(requisition_id), now)
            if not orders:
                raise PreconditionNotMet("No accepted awards to order.", requisition_id)

            updated = requisition.model_copy(deep=True)
            StatusMachine.transition(updated, S.PO_CREATED, now)
            self.repository.save_award_state(
                updated,
                purchase_orders=orders,
                audit=[
                    audit_entry(
                        actor.user_id, "CREATE_PO", "PurchaseOrder", po.id,
                        f"PO for vendor {po.vendor_id}, {len(po.items)} item(s), total {po.total_amount:.2f}",
                        requisition_id,
                    )
                    for po in orders
                ],
            )
            logger.info("[AwardService] Created %d purchase order(s) for %s", len(orders), requisition_id)
            return orders

        return self.locks.run(requisition_id, work)

    @staticmethod
    def _accepted_items(requisition: Requisition, quotations: List[Quotation]) -> Dict[str, List[QuoteItem]]:
        """Accepted proposals grouped by quotation id."""
        by_id = {q.id: q for q in quotations}
        accepted: Dict[str, List[QuoteItem]] = {}

        if requisition.strategy == AwardStrategy.ITEM:
            for item in requisition.items:
                for detail in item.per_item_award_details:
                    if detail.status == AwardItemStatus.ACCEPTED:
                        quote_item = by_id[detail.quotation_id].get_item(detail.quote_item_id)
                        accepted.setdefault(detail.quotation_id, []).append(quote_item)
        else:
            for quote in quotations:
                if quote.status == QuotationStatus.ACCEPTED:
                    accepted[quote.id] = list(quote.items)
        return accepted

    def _build_purchase_orders(
        self,
        requisition: Requisition,
        quotations: List[Quotation],
        now: datetime
    ) -> List[PurchaseOrder]:
        by_id = {q.id: q for q in quotations}
        orders = []
        for quotation_id, items in self._accepted_items(requisition, quotations).items():
            quote = by_id[quotation_id]
            orders.append(PurchaseOrder(
                requisition_id=requisition.id,
                vendor_id=quote.vendor_id,
                quotation_id=quotation_id,
                items=items,
                total_amount=sum(i.total_price for i in items),
                created_at=now,
            ))
        return orders

    def mark_po_fulfilled(self, actor: Actor, po_id: str, now: Optional[datetime] = None) -> Requisition:
        """Fulfil one purchase order; the requisition follows (Partially_Closed / Fulfilled)."""
        po = self.repository.load_purchase_order(po_id)
        requisition_id = po.requisition_id
        self._authorize(actor, A.FULFILL_PURCHASE_ORDER, self.repository.load_requisition(requisition_id))
        now = self._now(now)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, [S.PO_CREATED, S.PARTIALLY_CLOSED], "fulfil a purchase order")
            orders = self.repository.load_purchase_orders(requisition_id)
            order = next(o for o in orders if o.id == po_id)
            if order.status == PurchaseOrderStatus.FULFILLED:
                raise InvalidTransition(f"Purchase order {po_id} is already fulfilled.", requisition_id)
            order.status = PurchaseOrderStatus.FULFILLED

            target = (
                S.FULFILLED if all(o.status == PurchaseOrderStatus.FULFILLED for o in orders)
                else S.PARTIALLY_CLOSED
            )
            updated = requisition.model_copy(deep=True)
            StatusMachine.transition(updated, target, now)
            updated.updated_at = now
            updated.version = self.repository.save_award_state(
                updated,
                purchase_orders=[order],
                audit=[audit_entry(
                    actor.user_id, "FULFILL_PO", "PurchaseOrder", po_id,
                    f"Purchase order fulfilled; requisition is {target.value}", requisition_id,
                )],
            )
            logger.info("[AwardService] PO %s fulfilled, %s is %s", po_id, requisition_id, target.value)
            return updated

        return self.locks.run(requisition_id, work)

    def close_requisition(self, actor: Actor, requisition_id: str, now: Optional[datetime] = None) -> Requisition:
        self._authorize(actor, A.CLOSE, self.repository.load_requisition(requisition_id))
        now = self._now(now)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            updated = requisition.model_copy(deep=True)
            StatusMachine.require_transition(updated, S.CLOSED)
            StatusMachine.transition(updated, S.CLOSED, now)
            updated.version = self.repository.save_award_state(
                updated,
                audit=[audit_entry(
                    actor.user_id, "CLOSE_REQUISITION", "Requisition", requisition_id,
                    "Requisition closed", requisition_id,
                )],
            )
            logger.info("[AwardService] Closed %s", requisition_id)
            return updated

        return self.locks.run(requisition_id, work)

    # ============================================================
    # CONTRACTS
    # ============================================================

    def create_contract(
        self,
        actor: Actor,
        requisition_id: str,
        vendor_id: str,
        start_date: datetime,
        end_date: datetime,
        now: Optional[datetime] = None
    ) -> Contract:
        """Draw up a draft contract for a vendor's approved, accepted award."""
        self._authorize(actor, A.CREATE_CONTRACT, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        start_date = self._as_local(start_date)
        end_date = self._as_local(end_date)
        if end_date <= start_date:
            raise ValidationError("A contract must end after it starts.", requisition_id)

        def work() -> Contract:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, CONTRACT_STAGES, "create a contract")
            quotations = self.repository.load_quotations(requisition_id)
            quote = next((q for q in quotations if q.vendor_id == vendor_id), None)
            items = self._accepted_items(requisition, quotations).get(quote.id) if quote else None
            if not items:
                raise PreconditionNotMet(f"Vendor {vendor_id} has no accepted award to contract.", requisition_id)

            contract = Contract(
                requisition_id=requisition_id,
                vendor_id=vendor_id,
                quotation_id=quote.id,
                items=items,
                total_amount=sum(i.total_price for i in items),
                start_date=start_date,
                end_date=end_date,
                created_by=actor.user_id,
                created_at=now,
            )
            self.repository.save_award_state(
                requisition,
                contracts=[contract],
                audit=[audit_entry(
                    actor.user_id, "CREATE_CONTRACT", "Contract", contract.id,
                    f"Draft contract {contract.id} for vendor {vendor_id}, "
                    f"{start_date.date().isoformat()} to {end_date.date().isoformat()}",
                    requisition_id,
                )],
            )
            logger.info("[AwardService] Contract %s drawn up for %s on %s", contract.id, vendor_id, requisition_id)
            return contract

        return self.locks.run(requisition_id, work)

    def list_contracts(self, requisition_id: Optional[str] = None, now: Optional[datetime] = None) -> List[Contract]:
        """Contracts with their status as of ``now`` (Draft / Active / Expired)."""
        now = self._now(now)
        if requisition_id:
            self.repository.load_requisition(requisition_id)
        contracts = self.repository.load_contracts(requisition_id)
        for contract in contracts:
            contract.status = contract.status_at(now)
        return contracts


# Singleton
_award_service = None


def get_award_service() -> AwardService:
    global _award_service
    if _award_service is None:
        _award_service = AwardService()
    return _award_service
