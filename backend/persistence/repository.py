"""
Award store repository.

Maps SQLModel rows to the award core's domain records and back. Award state
(requisition, quotations, score sets, POs, contracts, assignment flags and
audit entries) is written in a single transaction guarded by the requisition's version column.
"""
import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from backend.award.errors import ConcurrencyConflict, NotFound, ValidationError
from backend.award.models import (
    CommitteeScoreSet, Contract, PurchaseOrder, Quotation, QuoteItem, Requisition
)
from backend.persistence.database import get_db_session
from backend.persistence.models import (
    AuditLog, CommitteeAssignment, ContractRecord, PurchaseOrderRecord, QuotationRecord,
    RequisitionRecord, ScoreSetRecord
)

logger = logging.getLogger(__name__)


# ============================================================
# MAPPING
# ============================================================

def _dump_list(models: Iterable) -> str:
    return json.dumps([m.model_dump(mode="json") for m in models])


def _requisition_values(req: Requisition) -> Dict:
    return {
        "title": req.title,
        "status": req.status.value,
        "items_json": _dump_list(req.items),
        "evaluation_criteria_json": req.evaluation_criteria.model_dump_json(),
        "rfq_settings_json": req.rfq_settings.model_dump_json(),
        "financial_committee_json": json.dumps(req.financial_committee_ids),
        "technical_committee_json": json.dumps(req.technical_committee_ids),
        "deadline": req.deadline,
        "scoring_deadline": req.scoring_deadline,
        "award_response_deadline": req.award_response_deadline,
        "award_response_duration_minutes": req.award_response_duration_minutes,
        "updated_at": req.updated_at,
    }


def _to_requisition(rec: RequisitionRecord) -> Requisition:
    return Requisition.model_validate({
        "id": rec.requisition_id,
        "title": rec.title,
        "status": rec.status,
        "items": json.loads(rec.items_json) if rec.items_json else [],
        "evaluation_criteria": json.loads(rec.evaluation_criteria_json) if rec.evaluation_criteria_json else {},
        "rfq_settings": json.loads(rec.rfq_settings_json) if rec.rfq_settings_json else {},
        "financial_committee_ids": json.loads(rec.financial_committee_json),
        "technical_committee_ids": json.loads(rec.technical_committee_json),
        "deadline": rec.deadline,
        "scoring_deadline": rec.scoring_deadline,
        "award_response_deadline": rec.award_response_deadline,
        "award_response_duration_minutes": rec.award_response_duration_minutes,
        "version": rec.version,
        "created_at": rec.created_at,
        "updated_at": rec.updated_at,
    })


def _apply_quotation(rec: QuotationRecord, quote: Quotation) -> None:
    rec.vendor_name = quote.vendor_name
    rec.status = quote.status.value
    rec.rank = quote.rank
    rec.final_average_score = quote.final_average_score
    rec.items_json = _dump_list(quote.items)
    rec.response_deadline = quote.response_deadline
    rec.decline_reason = quote.decline_reason
    rec.created_at = quote.created_at


def _to_quotation(rec: QuotationRecord, score_sets: List[CommitteeScoreSet]) -> Quotation:
    return Quotation.model_validate({
        "id": rec.quotation_id,
        "requisition_id": rec.requisition_id,
        "vendor_id": rec.vendor_id,
        "vendor_name": rec.vendor_name,
        "status": rec.status,
        "rank": rec.rank,
        "items": json.loads(rec.items_json) if rec.items_json else [],
        "scores": [s.model_dump() for s in score_sets],
        "final_average_score": rec.final_average_score,
        "response_deadline": rec.response_deadline,
        "decline_reason": rec.decline_reason,
        "created_at": rec.created_at,
    })


def _to_score_set(rec: ScoreSetRecord) -> CommitteeScoreSet:
    return CommitteeScoreSet.model_validate({
        "scorer_id": rec.scorer_id,
        "item_scores": json.loads(rec.item_scores_json) if rec.item_scores_json else [],
        "final_score": rec.final_score,
        "comment": rec.comment,
    })


def _po_record(po: PurchaseOrder) -> PurchaseOrderRecord:
    return PurchaseOrderRecord(
        po_id=po.id,
        requisition_id=po.requisition_id,
        vendor_id=po.vendor_id,
        quotation_id=po.quotation_id,
        items_json=_dump_list(po.items),
        total_amount=po.total_amount,
        status=po.status.value,
        created_at=po.created_at,
    )


def _to_purchase_order(rec: PurchaseOrderRecord) -> PurchaseOrder:
    return PurchaseOrder(
        id=rec.po_id,
        requisition_id=rec.requisition_id,
        vendor_id=rec.vendor_id,
        quotation_id=rec.quotation_id,
        items=[QuoteItem.model_validate(i) for i in json.loads(rec.items_json)],
        total_amount=rec.total_amount,
        status=rec.status,
        created_at=rec.created_at,
    )


def _contract_record(contract: Contract) -> ContractRecord:
    return ContractRecord(
        contract_id=contract.id,
        requisition_id=contract.requisition_id,
        vendor_id=contract.vendor_id,
        quotation_id=contract.quotation_id,
        items_json=_dump_list(contract.items),
        total_amount=contract.total_amount,
        start_date=contract.start_date,
        end_date=contract.end_date,
        status=contract.status.value,
        created_by=contract.created_by,
        created_at=contract.created_at,
    )


def _to_contract(rec: ContractRecord) -> Contract:
    return Contract(
        id=rec.contract_id,
        requisition_id=rec.requisition_id,
        vendor_id=rec.vendor_id,
        quotation_id=rec.quotation_id,
        items=[QuoteItem.model_validate(i) for i in json.loads(rec.items_json)],
        total_amount=rec.total_amount,
        start_date=rec.start_date,
        end_date=rec.end_date,
        status=rec.status,
        created_by=rec.created_by,
        created_at=rec.created_at,
    )


def _quotation_record(quote: Quotation) -> QuotationRecord:
    rec = QuotationRecord(
        quotation_id=quote.id,
        requisition_id=quote.requisition_id,
        vendor_id=quote.vendor_id,
    )
    _apply_quotation(rec, quote)
    return rec


def _upsert_score_set(session, quotation_id: str, score_set: CommitteeScoreSet) -> None:
    """At most one score set per (quotation, scorer): rescoring overwrites."""
    rec = session.exec(
        select(ScoreSetRecord).where(
            ScoreSetRecord.quotation_id == quotation_id,
            ScoreSetRecord.scorer_id == score_set.scorer_id,
        )
    ).first()
    if rec is None:
        rec = ScoreSetRecord(quotation_id=quotation_id, scorer_id=score_set.scorer_id)
    rec.item_scores_json = _dump_list(score_set.item_scores)
    rec.final_score = score_set.final_score
    rec.comment = score_set.comment
    rec.updated_at = datetime.now()
    session.add(rec)


def audit_entry(
    user_id: str,
    action: str,
    entity: str,
    entity_id: str,
    details: str,
    requisition_id: Optional[str] = None
) -> AuditLog:
    return AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        requisition_id=requisition_id,
        details=details,
    )


class AwardRepository:
    """
    CRUD access to the award store.

    Every method opens its own session; ``save_award_state`` is the only
    multi-row write and runs in one transaction.
    """

    # ============================================================
    # REQUISITIONS
    # ============================================================

    def add_requisition(self, requisition: Requisition, audit: Optional[AuditLog] = None) -> None:
        rec = RequisitionRecord(
            requisition_id=requisition.id,
            version=requisition.version,
            created_at=requisition.created_at,
            **_requisition_values(requisition)
        )
        with get_db_session() as session:
            session.add(rec)
            if audit is not None:
                session.add(audit)
            session.commit()

    def load_requisition(self, requisition_id: str) -> Requisition:
        with get_db_session() as session:
            rec = session.exec(
                select(RequisitionRecord).where(RequisitionRecord.requisition_id == requisition_id)
            ).first()
            if not rec:
                raise NotFound(f"Requisition {requisition_id} not found", requisition_id)
            return _to_requisition(rec)

    def list_requisitions(
        self,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Requisition]:
        with get_db_session() as session:
            query = select(RequisitionRecord)
            if status:
                query = query.where(RequisitionRecord.status == status)
            query = (
                query.order_by(RequisitionRecord.updated_at.desc(), RequisitionRecord.id)
                .offset(offset)
                .limit(limit)
            )
            return [_to_requisition(r) for r in session.exec(query).all()]

    def requisition_ids(self, status: Optional[str] = None) -> List[str]:
        """Ids of every requisition (optionally in one status), oldest first."""
        with get_db_session() as session:
            query = select(RequisitionRecord.requisition_id)
            if status:
                query = query.where(RequisitionRecord.status == status)
            return list(session.exec(query.order_by(RequisitionRecord.id)).all())

    # ============================================================
    # QUOTATIONS AND SCORES
    # ============================================================

    def load_quotations(self, requisition_id: str) -> List[Quotation]:
        """Quotations in submission order, with their committee score sets."""
        with get_db_session() as session:
            records = session.exec(
                select(QuotationRecord)
                .where(QuotationRecord.requisition_id == requisition_id)
                .order_by(QuotationRecord.created_at, QuotationRecord.id)
            ).all()
            quote_ids = [r.quotation_id for r in records]
            score_records = session.exec(
                select(ScoreSetRecord).where(ScoreSetRecord.quotation_id.in_(quote_ids))
            ).all() if quote_ids else []

        by_quote: Dict[str, List[CommitteeScoreSet]] = {}
        for s in score_records:
            by_quote.setdefault(s.quotation_id, []).append(_to_score_set(s))
        return [_to_quotation(r, by_quote.get(r.quotation_id, [])) for r in records]

    def load_quotation(self, quotation_id: str) -> Quotation:
        with get_db_session() as session:
            rec = session.exec(
                select(QuotationRecord).where(QuotationRecord.quotation_id == quotation_id)
            ).first()
            if not rec:
                raise NotFound(f"Quotation {quotation_id} not found")
            score_records = session.exec(
                select(ScoreSetRecord).where(ScoreSetRecord.quotation_id == quotation_id)
            ).all()
            return _to_quotation(rec, [_to_score_set(s) for s in score_records])

    # ============================================================
    # AWARD STATE
    # ============================================================

    def save_award_state(
        self,
        requisition: Requisition,
        quotations: Iterable[Quotation] = (),
        purchase_orders: Iterable[PurchaseOrder] = (),
        audit: Iterable[AuditLog] = (),
        new_quotations: Iterable[Quotation] = (),
        drop_scores_for: Iterable[str] = (),
        score_sets: Iterable[Tuple[str, CommitteeScoreSet]] = (),
        contracts: Iterable[Contract] = (),
        reset_assignments: bool = False
    ) -> int:
        """
        Persist a requisition and everything that hangs off it atomically.

        The write only applies if the stored version still equals
        ``requisition.version``; otherwise ConcurrencyConflict is raised and
        nothing is written. Returns the new version.

        ``quotations`` update existing rows, ``new_quotations`` insert rows,
        ``drop_scores_for`` deletes the score sets of replaced quotations,
        ``score_sets`` are (quotation id, score set) upserts, and
        ``reset_assignments`` clears every member's submission flag.
        """
        new_version = requisition.version + 1
        with get_db_session() as session:
            result = session.execute(
                update(RequisitionRecord)
                .where(
                    RequisitionRecord.requisition_id == requisition.id,
                    RequisitionRecord.version == requisition.version,
                )
                .values(version=new_version, **_requisition_values(requisition))
            )
            if result.rowcount != 1:
                session.rollback()
                raise ConcurrencyConflict(
                    f"Requisition {requisition.id} was modified concurrently "
                    f"(expected version {requisition.version})",
                    requisition.id,
                )

            quotations = list(quotations)
            if quotations:
                records = {
                    r.quotation_id: r for r in session.exec(
                        select(QuotationRecord).where(
                            QuotationRecord.quotation_id.in_([q.id for q in quotations])
                        )
                    ).all()
                }
                for quote in quotations:
                    rec = records.get(quote.id)
                    if rec is None:
                        session.rollback()
                        raise NotFound(f"Quotation {quote.id} not found", requisition.id)
                    _apply_quotation(rec, quote)
                    session.add(rec)

            new_quotations = list(new_quotations)
            for quote in new_quotations:
                session.add(_quotation_record(quote))
            if new_quotations:
                try:
                    session.flush()
                except IntegrityError:
                    session.rollback()
                    raise ValidationError(
                        "Vendor already has a quotation for this requisition.", requisition.id
                    )

            for quotation_id in drop_scores_for:
                for old in session.exec(
                    select(ScoreSetRecord).where(ScoreSetRecord.quotation_id == quotation_id)
                ).all():
                    session.delete(old)
            for quotation_id, score_set in score_sets:
                _upsert_score_set(session, quotation_id, score_set)

            for po in purchase_orders:
                existing = session.exec(
                    select(PurchaseOrderRecord).where(PurchaseOrderRecord.po_id == po.id)
                ).first()
                if existing is None:
                    session.add(_po_record(po))
                else:
                    existing.status = po.status.value
                    session.add(existing)

            contracts = list(contracts)
            for contract in contracts:
                session.add(_contract_record(contract))
            if contracts:
                try:
                    session.flush()
                except IntegrityError:
                    session.rollback()
                    raise ValidationError(
                        "A contract already exists for this vendor and requisition.", requisition.id
                    )

            if reset_assignments:
                for assignment in session.exec(
                    select(CommitteeAssignment).where(CommitteeAssignment.requisition_id == requisition.id)
                ).all():
                    assignment.scores_submitted = False
                    assignment.submitted_at = None
                    session.add(assignment)

            for entry in audit:
                session.add(entry)
            session.commit()

        logger.debug("[AwardRepository] Saved %s at version %d", requisition.id, new_version)
        return new_version

    # ============================================================
    # COMMITTEE
    # ============================================================

    def set_assignments(self, requisition_id: str, member_ids: List[str]) -> None:
        """Make the assignment table match ``member_ids``, keeping existing flags."""
        with get_db_session() as session:
            existing = {
                a.user_id: a for a in session.exec(
                    select(CommitteeAssignment).where(CommitteeAssignment.requisition_id == requisition_id)
                ).all()
            }
            for user_id, assignment in existing.items():
                if user_id not in member_ids:
                    session.delete(assignment)
            for user_id in member_ids:
                if user_id not in existing:
                    session.add(CommitteeAssignment(requisition_id=requisition_id, user_id=user_id))
            session.commit()

    def mark_scores_submitted(self, requisition_id: str, user_id: str, audit: Optional[AuditLog] = None) -> None:
        with get_db_session() as session:
            assignment = session.exec(
                select(CommitteeAssignment).where(
                    CommitteeAssignment.requisition_id == requisition_id,
                    CommitteeAssignment.user_id == user_id,
                )
            ).first()
            if assignment is None:
                assignment = CommitteeAssignment(requisition_id=requisition_id, user_id=user_id)
            assignment.scores_submitted = True
            assignment.submitted_at = datetime.now()
            session.add(assignment)
            if audit is not None:
                session.add(audit)
            session.commit()

    def submitted_scorer_ids(self, requisition_id: str) -> List[str]:
        with get_db_session() as session:
            return [
                a.user_id for a in session.exec(
                    select(CommitteeAssignment).where(
                        CommitteeAssignment.requisition_id == requisition_id,
                        CommitteeAssignment.scores_submitted == True,  # noqa: E712
                    )
                ).all()
            ]

    # ============================================================
    # PURCHASE ORDERS
    # ============================================================

    def load_purchase_orders(self, requisition_id: str) -> List[PurchaseOrder]:
        with get_db_session() as session:
            return [
                _to_purchase_order(r) for r in session.exec(
                    select(PurchaseOrderRecord)
                    .where(PurchaseOrderRecord.requisition_id == requisition_id)
                    .order_by(PurchaseOrderRecord.created_at)
                ).all()
            ]

    def load_purchase_order(self, po_id: str) -> PurchaseOrder:
        with get_db_session() as session:
            rec = session.exec(
                select(PurchaseOrderRecord).where(PurchaseOrderRecord.po_id == po_id)
            ).first()
            if not rec:
                raise NotFound(f"Purchase order {po_id} not found")
            return _to_purchase_order(rec)

    # ============================================================
    # CONTRACTS
    # ============================================================

    def load_contracts(self, requisition_id: Optional[str] = None) -> List[Contract]:
        """Contracts, newest first; all of them when ``requisition_id`` is None."""
        with get_db_session() as session:
            query = select(ContractRecord)
            if requisition_id:
                query = query.where(ContractRecord.requisition_id == requisition_id)
            query = query.order_by(ContractRecord.created_at.desc(), ContractRecord.id.desc())
            return [_to_contract(r) for r in session.exec(query).all()]

    # ============================================================
    # AUDIT
    # ============================================================

    def add_audit(self, entry: AuditLog) -> None:
        with get_db_session() as session:
            session.add(entry)
            session.commit()

    def list_audit(self, requisition_id: str) -> List[AuditLog]:
        with get_db_session() as session:
            return list(session.exec(
                select(AuditLog)
                .where(AuditLog.requisition_id == requisition_id)
                .order_by(AuditLog.timestamp, AuditLog.id)
            ).all())


# Singleton
_repository = None


def get_repository() -> AwardRepository:
    global _repository
    if _repository is None:
        _repository = AwardRepository()
    return _repository
