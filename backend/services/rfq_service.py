"""
RFQ service.

Requisition intake, committee assignment and the quotation window:
sending the RFQ, collecting vendor quotations, opening scoring, and the
reopen / restart / per-item restart / cancel recovery actions.
"""
import logging
from datetime import datetime
from typing import List, Optional, Set

from backend.award.cascade import VendorNotice, item_failed
from backend.award.errors import InvalidTransition, PreconditionNotMet, ValidationError
from backend.award.models import Actor, Quotation, QuoteItem, Requisition, RequisitionItem
from backend.award.projection import HELD_STATES, OPEN_STATES, item_open_for_tender, open_item_ids
from backend.award.status_machine import StatusMachine
from backend.persistence.repository import audit_entry
from backend.services.base_service import BaseService
from shared.constants import (
    ACTIVE_RFQ_STAGES, AwardItemStatus, AwardStrategy, QuotationStatus, RequisitionAction as A,
    RequisitionStatus as S
)
from shared.schemas import CreateRequisitionRequest, QuoteItemInput

logger = logging.getLogger(__name__)


def _holding_quotation_ids(requisition: Requisition) -> Set[str]:
    """Quotations holding an offered or accepted per-item award."""
    return {
        d.quotation_id
        for item in requisition.items
        for d in item.per_item_award_details
        if d.status.value in HELD_STATES
    }


class RFQService(BaseService):
    """
    Service for the RFQ phase of a requisition.

    Every mutating call authorizes first, then runs under the requisition's
    lock with a version-checked save.
    """

    # ============================================================
    # REQUISITIONS
    # ============================================================

    def create_requisition(
        self,
        actor: Actor,
        request: CreateRequisitionRequest,
        now: Optional[datetime] = None
    ) -> Requisition:
        """Register an approved requisition in PreApproved."""
        self._authorize(actor, A.CREATE, None)
        now = self._now(now)

        if not request.items:
            raise ValidationError("A requisition needs at least one item.")
        request.evaluation_criteria.validate_weights()

        items = []
        for item in request.items:
            fields = item.model_dump(exclude_none=True)
            items.append(RequisitionItem(**fields))
        if len({i.id for i in items}) != len(items):
            raise ValidationError("Requisition item ids must be unique.")

        requisition = Requisition(
            title=request.title,
            items=items,
            evaluation_criteria=request.evaluation_criteria,
            rfq_settings=request.rfq_settings,
            financial_committee_ids=list(request.financial_committee_ids),
            technical_committee_ids=list(request.technical_committee_ids),
            created_at=now,
            updated_at=now,
        )
        requisition.validate_committees()

        self.repository.add_requisition(
            requisition,
            audit=audit_entry(
                actor.user_id, "CREATE_REQUISITION", "Requisition", requisition.id,
                f"Created requisition '{requisition.title}' with {len(items)} item(s) "
                f"({requisition.strategy.value} strategy)",
                requisition.id,
            ),
        )
        self.repository.set_assignments(requisition.id, requisition.committee_member_ids())
        logger.info("[RFQService] Created requisition %s", requisition.id)
        return requisition

    def assign_committee(
        self,
        actor: Actor,
        requisition_id: str,
        financial_committee_ids: List[str],
        technical_committee_ids: List[str],
        scoring_deadline: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> Requisition:
        """Replace the evaluation committees (before any scores are submitted)."""
        self._authorize(actor, A.ASSIGN_COMMITTEE, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        scoring_deadline = self._as_local(scoring_deadline)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(
                requisition,
                [S.PRE_APPROVED, S.ACCEPTING_QUOTES, S.SCORING_IN_PROGRESS],
                "assign a committee",
            )
            if requisition.status == S.SCORING_IN_PROGRESS and self.repository.submitted_scorer_ids(requisition_id):
                raise InvalidTransition(
                    "Committee cannot change after members have submitted scores.",
                    requisition_id,
                )
            if scoring_deadline is not None and scoring_deadline <= now:
                raise ValidationError("The scoring deadline must be in the future.", requisition_id)

            updated = requisition.model_copy(deep=True)
            updated.financial_committee_ids = list(financial_committee_ids)
            updated.technical_committee_ids = list(technical_committee_ids)
            updated.validate_committees()
            if scoring_deadline is not None:
                updated.scoring_deadline = scoring_deadline
            updated.updated_at = now

            updated.version = self.repository.save_award_state(
                updated,
                audit=[audit_entry(
                    actor.user_id, "ASSIGN_COMMITTEE", "Requisition", requisition_id,
                    f"Financial: {updated.financial_committee_ids}; "
                    f"technical: {updated.technical_committee_ids}",
                    requisition_id,
                )],
            )
            self.repository.set_assignments(requisition_id, updated.committee_member_ids())
            return updated

        return self.locks.run(requisition_id, work)

    # ============================================================
    # QUOTATION WINDOW
    # ============================================================

    def send_rfq(
        self,
        actor: Actor,
        requisition_id: str,
        deadline: datetime,
        now: Optional[datetime] = None
    ) -> Requisition:
        """PreApproved -> Accepting_Quotes with a submission deadline."""
        self._authorize(actor, A.SEND_RFQ, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        deadline = self._as_local(deadline)
        if deadline <= now:
            raise ValidationError("The quotation deadline must be in the future.", requisition_id)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            requisition.evaluation_criteria.validate_weights()
            updated = requisition.model_copy(deep=True)
            StatusMachine.transition(updated, S.ACCEPTING_QUOTES, now)
            updated.deadline = deadline
            updated.version = self.repository.save_award_state(
                updated,
                audit=[audit_entry(
                    actor.user_id, "SEND_RFQ", "Requisition", requisition_id,
                    f"RFQ sent, quotations due {deadline.isoformat()}",
                    requisition_id,
                )],
            )
            logger.info("[RFQService] RFQ sent for %s (deadline %s)", requisition_id, deadline)
            return updated

        return self.locks.run(requisition_id, work)

    def submit_quotation(
        self,
        actor: Actor,
        requisition_id: str,
        items: List[QuoteItemInput],
        vendor_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Quotation:
        """
        Record a vendor's quotation.

        A vendor holds one quotation per requisition. Resubmitting replaces it
        when the RFQ allows edits, or when a restart invalidated the old one,
        as long as the vendor holds no award on another item.
        """
        self._authorize(actor, A.SUBMIT_QUOTATION, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        vendor_id = actor.vendor_id or actor.user_id

        def work() -> Quotation:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, [S.ACCEPTING_QUOTES], "submit a quotation")
            if StatusMachine.deadline_passed(requisition, now):
                raise InvalidTransition("The quotation deadline has passed.", requisition_id)
            quote_items = self._build_quote_items(requisition, items)

            existing = next(
                (q for q in self.repository.load_quotations(requisition_id) if q.vendor_id == vendor_id),
                None,
            )
            updated = requisition.model_copy(deep=True)
            if existing is None:
                quotation = Quotation(
                    requisition_id=requisition_id,
                    vendor_id=vendor_id,
                    vendor_name=vendor_name,
                    items=quote_items,
                    created_at=now,
                )
                updated.version = self.repository.save_award_state(
                    updated,
                    new_quotations=[quotation],
                    audit=[audit_entry(
                        actor.user_id, "SUBMIT_QUOTATION", "Quotation", quotation.id,
                        f"Vendor {vendor_id} quoted {len(quote_items)} item(s)",
                        requisition_id,
                    )],
                )
                logger.info("[RFQService] Vendor %s submitted quotation %s", vendor_id, quotation.id)
                return quotation

            invalidated = existing.status == QuotationStatus.REJECTED
            if not invalidated and not requisition.rfq_settings.allow_quote_edits:
                raise ValidationError(
                    f"Vendor {vendor_id} already submitted a quotation and edits are not allowed.",
                    requisition_id,
                )
            if existing.id in _holding_quotation_ids(requisition):
                raise ValidationError(
                    f"Vendor {vendor_id} holds an award on this requisition; its quotation cannot be replaced.",
                    requisition_id,
                )
            quotation = Quotation(
                id=existing.id,
                requisition_id=requisition_id,
                vendor_id=vendor_id,
                vendor_name=vendor_name or existing.vendor_name,
                items=quote_items,
                created_at=now,
            )
            updated.version = self.repository.save_award_state(
                updated,
                [quotation],
                drop_scores_for=[quotation.id],
                audit=[audit_entry(
                    actor.user_id, "UPDATE_QUOTATION", "Quotation", quotation.id,
                    f"Vendor {vendor_id} replaced its quotation",
                    requisition_id,
                )],
            )
            logger.info("[RFQService] Vendor %s replaced quotation %s", vendor_id, quotation.id)
            return quotation

        return self.locks.run(requisition_id, work)

    def _build_quote_items(self, requisition: Requisition, items: List[QuoteItemInput]) -> List[QuoteItem]:
        if not items:
            raise ValidationError("A quotation needs at least one item.", requisition.id)
        quote_items = []
        for entry in items:
            req_item = requisition.get_item(entry.requisition_item_id)
            if req_item is None:
                raise ValidationError(
                    f"Unknown requisition item {entry.requisition_item_id}.", requisition.id
                )
            if not item_open_for_tender(req_item):
                raise ValidationError(f"Item {req_item.name} is already awarded.", requisition.id)
            quote_items.append(QuoteItem(
                requisition_item_id=req_item.id,
                name=entry.name or req_item.name,
                quantity=entry.quantity,
                unit_price=entry.unit_price,
            ))
        return quote_items

    def start_scoring(self, actor: Actor, requisition_id: str, now: Optional[datetime] = None) -> Requisition:
        """Accepting_Quotes -> Scoring_In_Progress once the deadline passed with a quorum."""
        self._authorize(actor, A.START_SCORING, self.repository.load_requisition(requisition_id))
        now = self._now(now)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            count = len(self._live_quotations(requisition))
            if requisition.status != S.ACCEPTING_QUOTES:
                StatusMachine.require_transition(requisition, S.SCORING_IN_PROGRESS)
            ok, reason = StatusMachine.can_start_scoring(requisition, count, self.settings, now)
            if not ok:
                if StatusMachine.needs_restart(requisition, count, now):
                    reason += "; no quotations were received, restart the RFQ"
                elif StatusMachine.needs_reopen(requisition, count, self.settings, now):
                    reason += "; reopen the RFQ to collect more quotations"
                raise PreconditionNotMet(reason, requisition_id)

            updated = requisition.model_copy(deep=True)
            StatusMachine.transition(updated, S.SCORING_IN_PROGRESS, now)
            updated.version = self.repository.save_award_state(
                updated,
                audit=[audit_entry(
                    actor.user_id, "START_SCORING", "Requisition", requisition_id,
                    f"Scoring opened with {count} quotation(s)",
                    requisition_id,
                )],
            )
            logger.info("[RFQService] Scoring started for %s", requisition_id)
            return updated

        return self.locks.run(requisition_id, work)

    def _live_quotations(self, requisition: Requisition) -> List[Quotation]:
        """Submitted quotations with at least one proposal for an item open for tender."""
        open_ids = set(open_item_ids(requisition))
        ranked_before = {
            d.quote_item_id for item in requisition.items for d in item.per_item_award_details
        }
        return [
            q for q in self.repository.load_quotations(requisition.id)
            if q.status == QuotationStatus.SUBMITTED
            and any(i.requisition_item_id in open_ids and i.id not in ranked_before for i in q.items)
        ]

    # ============================================================
    # RECOVERY
    # ============================================================

    def reopen_rfq(
        self,
        actor: Actor,
        requisition_id: str,
        new_deadline: datetime,
        now: Optional[datetime] = None
    ) -> Requisition:
        """Extend the quotation deadline after it passed without a quorum."""
        self._authorize(actor, A.REOPEN_RFQ, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        new_deadline = self._as_local(new_deadline)
        if new_deadline <= now:
            raise ValidationError("The new deadline must be in the future.", requisition_id)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, [S.ACCEPTING_QUOTES], "reopen the RFQ")
            count = len(self._live_quotations(requisition))
            if not StatusMachine.deadline_passed(requisition, now):
                raise PreconditionNotMet("The quotation deadline has not passed yet.", requisition_id)
            if count >= self.settings.committee_quorum:
                raise PreconditionNotMet(
                    "Enough quotations were received; start scoring instead.", requisition_id
                )

            updated = requisition.model_copy(deep=True)
            updated.deadline = new_deadline
            updated.updated_at = now
            updated.version = self.repository.save_award_state(
                updated,
                audit=[audit_entry(
                    actor.user_id, "REOPEN_RFQ", "Requisition", requisition_id,
                    f"Deadline extended to {new_deadline.isoformat()} ({count} quotation(s) so far)",
                    requisition_id,
                )],
            )
            logger.info("[RFQService] RFQ reopened for %s until %s", requisition_id, new_deadline)
            return updated

        return self.locks.run(requisition_id, work)

    def restart_rfq(
        self,
        actor: Actor,
        requisition_id: str,
        reason: str = "",
        now: Optional[datetime] = None
    ) -> Requisition:
        """Invalidate the current round and send the requisition back to PreApproved."""
        return self._compensate(actor, requisition_id, A.RESTART_RFQ, "RESTART_RFQ", reason, now)

    def restart_item_rfq(
        self,
        actor: Actor,
        requisition_id: str,
        item_ids: List[str],
        new_deadline: datetime,
        vendor_ids: Optional[List[str]] = None,
        reason: str = "",
        now: Optional[datetime] = None
    ) -> Requisition:
        """
        Re-tender failed items of a per-item award.

        The named items go back out for quotations with a new deadline while
        every other item keeps its award. Vendors left holding no award lose
        their bid and may quote again; the committee scores the new round.
        """
        self._authorize(actor, A.RESTART_ITEM_RFQ, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        new_deadline = self._as_local(new_deadline)
        if not item_ids:
            raise ValidationError("Name at least one item to re-tender.", requisition_id)
        if new_deadline <= now:
            raise ValidationError("The new deadline must be in the future.", requisition_id)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            if requisition.strategy != AwardStrategy.ITEM:
                raise ValidationError(
                    "Single items can only be re-tendered under the per-item strategy; restart the RFQ instead.",
                    requisition_id,
                )
            StatusMachine.require_status(requisition, [S.AWARDED, S.AWARD_DECLINED], "restart items")

            updated = requisition.model_copy(deep=True)
            targets = []
            for item_id in dict.fromkeys(item_ids):
                item = updated.get_item(item_id)
                if item is None:
                    raise ValidationError(f"Unknown requisition item {item_id}.", requisition_id)
                if not item_failed(item):
                    raise InvalidTransition(
                        f"Item {item.name} still has a live award and cannot be re-tendered.",
                        requisition_id,
                    )
                targets.append(item)
            waiting = [
                item.name for item in updated.items
                if any(d.status.value in OPEN_STATES for d in item.per_item_award_details)
            ]
            if waiting:
                raise PreconditionNotMet(
                    f"Items still waiting for a vendor response: {waiting}", requisition_id
                )

            for item in targets:
                for detail in item.per_item_award_details:
                    detail.status = AwardItemStatus.RESTARTED
                    detail.response_deadline = None

            holding = _holding_quotation_ids(updated)
            released = []
            for quote in self.repository.load_quotations(requisition_id):
                if quote.id not in holding and quote.status != QuotationStatus.REJECTED:
                    quote.status = QuotationStatus.REJECTED
                    quote.rank = None
                    quote.response_deadline = None
                    released.append(quote)

            StatusMachine.transition(updated, S.ACCEPTING_QUOTES, now)
            updated.deadline = new_deadline
            updated.award_response_deadline = None
            names = ", ".join(item.name for item in targets)
            updated.version = self.repository.save_award_state(
                updated,
                released,
                reset_assignments=True,
                audit=[audit_entry(
                    actor.user_id, "RESTART_ITEM_RFQ", "Requisition", requisition_id,
                    f"Restarted RFQ for items: {names}. Sent to {len(vendor_ids or [])} vendor(s). {reason}".strip(),
                    requisition_id,
                )],
            )
            logger.info(
                "[RFQService] Re-tendered %d item(s) on %s until %s", len(targets), requisition_id, new_deadline,
            )
            return updated

        updated = self.locks.run(requisition_id, work)
        self._notify([
            VendorNotice(vendor_id=vendor_id, payload={
                "event": "rfq_items_reopened",
                "requisition_id": requisition_id,
                "requisition_title": updated.title,
                "item_ids": list(dict.fromkeys(item_ids)),
                "deadline": new_deadline.isoformat(),
            })
            for vendor_id in vendor_ids or []
        ])
        return updated

    def cancel_rfq(
        self,
        actor: Actor,
        requisition_id: str,
        reason: str = "",
        now: Optional[datetime] = None
    ) -> Requisition:
        """Withdraw the RFQ; same compensation as a restart."""
        return self._compensate(actor, requisition_id, A.CANCEL_RFQ, "CANCEL_RFQ", reason, now)

    def _compensate(
        self,
        actor: Actor,
        requisition_id: str,
        action: A,
        audit_action: str,
        reason: str,
        now: Optional[datetime]
    ) -> Requisition:
        self._authorize(actor, action, self.repository.load_requisition(requisition_id))
        now = self._now(now)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, ACTIVE_RFQ_STAGES, action.value.replace("_", " "))

            updated = requisition.model_copy(deep=True)
            quotations = self.repository.load_quotations(requisition_id)
            invalidated = []
            for quote in quotations:
                if quote.status != QuotationStatus.REJECTED:
                    quote.status = QuotationStatus.REJECTED
                    invalidated.append(quote.id)
                quote.rank = None
                quote.response_deadline = None
            for item in updated.items:
                for detail in item.per_item_award_details:
                    if detail.status != AwardItemStatus.RESTARTED:
                        detail.status = AwardItemStatus.RESTARTED
                        detail.response_deadline = None

            StatusMachine.transition(updated, S.PRE_APPROVED, now)
            updated.deadline = None
            updated.award_response_deadline = None
            updated.version = self.repository.save_award_state(
                updated,
                quotations,
                reset_assignments=True,
                audit=[audit_entry(
                    actor.user_id, audit_action, "Requisition", requisition_id,
                    f"{len(invalidated)} quotation(s) invalidated. {reason}".strip(),
                    requisition_id,
                )],
            )
            logger.info(
                "[RFQService] %s on %s: %d quotation(s) invalidated",
                audit_action, requisition_id, len(invalidated),
            )
            return updated

        return self.locks.run(requisition_id, work)


# Singleton
_rfq_service = None


def get_rfq_service() -> RFQService:
    global _rfq_service
    if _rfq_service is None:
        _rfq_service = RFQService()
    return _rfq_service
