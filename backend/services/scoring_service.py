"""
Scoring service.

Committee members score each quotation against the requisition's criteria
and then submit their scores. Aggregated vendor scores are recomputed on
every change so the finalizer always sees current numbers.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from backend.award.errors import InvalidTransition, NotFound, PreconditionNotMet, ValidationError
from backend.award.models import (
    Actor, CommitteeScoreSet, ItemScore, Quotation, Requisition, Score
)
from backend.award.scoring import aggregate, apply_criteria
from backend.award.status_machine import StatusMachine
from backend.persistence.repository import audit_entry
from backend.services.base_service import BaseService
from shared.constants import (
    QuotationStatus, RequisitionAction as A, RequisitionStatus as S, ScoreType
)
from shared.schemas import ItemScoreInput, ScoringProgress

logger = logging.getLogger(__name__)


def _criterion_types(requisition: Requisition) -> Dict[str, ScoreType]:
    criteria = requisition.evaluation_criteria
    types = {c.id: ScoreType.FINANCIAL for c in criteria.financial_criteria}
    types.update({c.id: ScoreType.TECHNICAL for c in criteria.technical_criteria})
    return types


def _committee_type(requisition: Requisition, user_id: str) -> Optional[ScoreType]:
    if user_id in requisition.financial_committee_ids:
        return ScoreType.FINANCIAL
    if user_id in requisition.technical_committee_ids:
        return ScoreType.TECHNICAL
    return None


class ScoringService(BaseService):
    """Service for committee scoring."""

    def score_quotation(
        self,
        actor: Actor,
        quotation_id: str,
        item_scores: List[ItemScoreInput],
        comment: Optional[str] = None,
        requisition_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CommitteeScoreSet:
        """
        Record (or overwrite) the actor's scores for one quotation.

        Financial committee members score financial criteria and technical
        members technical ones.
        """
        quotation = self.repository.load_quotation(quotation_id)
        if requisition_id is not None and requisition_id != quotation.requisition_id:
            raise NotFound(f"Quotation {quotation_id} not found", requisition_id)
        requisition_id = quotation.requisition_id
        self._authorize(actor, A.SCORE_QUOTATION, self.repository.load_requisition(requisition_id))
        now = self._now(now)

        def work() -> CommitteeScoreSet:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, [S.SCORING_IN_PROGRESS], "score a quotation")
            if actor.user_id in self.repository.submitted_scorer_ids(requisition_id):
                raise InvalidTransition(
                    f"{actor.user_id} has already submitted scores for this requisition.",
                    requisition_id,
                )

            quotations = self.repository.load_quotations(requisition_id)
            target = next((q for q in quotations if q.id == quotation_id), None)
            if target is None or target.status != QuotationStatus.SUBMITTED:
                raise InvalidTransition(f"Quotation {quotation_id} is not open for scoring.", requisition_id)

            score_set = apply_criteria(
                self._build_score_set(requisition, target, actor.user_id, item_scores, comment),
                requisition.evaluation_criteria,
            )
            target.scores = [s for s in target.scores if s.scorer_id != actor.user_id] + [score_set]

            rescored = aggregate(requisition.items, quotations, requisition.evaluation_criteria)
            updated = requisition.model_copy(deep=True)
            updated.updated_at = now
            self.repository.save_award_state(
                updated,
                rescored,
                score_sets=[(quotation_id, score_set)],
                audit=[audit_entry(
                    actor.user_id, "SCORE_QUOTATION", "Quotation", quotation_id,
                    f"Scored {len(score_set.item_scores)} item(s), final score {score_set.final_score:.2f}",
                    requisition_id,
                )],
            )
            logger.info(
                "[ScoringService] %s scored quotation %s: %.2f",
                actor.user_id, quotation_id, score_set.final_score,
            )
            return score_set

        return self.locks.run(requisition_id, work)

    def _build_score_set(
        self,
        requisition: Requisition,
        quotation: Quotation,
        scorer_id: str,
        item_scores: List[ItemScoreInput],
        comment: Optional[str]
    ) -> CommitteeScoreSet:
        if not item_scores:
            raise ValidationError("No scores given.", requisition.id)
        types = _criterion_types(requisition)
        committee = _committee_type(requisition, scorer_id)

        built = []
        seen = set()
        for entry in item_scores:
            if quotation.get_item(entry.quote_item_id) is None:
                raise ValidationError(
                    f"Item {entry.quote_item_id} is not part of quotation {quotation.id}.",
                    requisition.id,
                )
            if entry.quote_item_id in seen:
                raise ValidationError(f"Item {entry.quote_item_id} scored twice.", requisition.id)
            seen.add(entry.quote_item_id)

            scores = []
            scored_criteria = set()
            for s in entry.scores:
                if s.criterion_id in scored_criteria:
                    raise ValidationError(
                        f"Criterion {s.criterion_id} scored twice for item {entry.quote_item_id}.",
                        requisition.id,
                    )
                scored_criteria.add(s.criterion_id)
                score_type = types.get(s.criterion_id)
                if score_type is None:
                    raise ValidationError(f"Unknown criterion {s.criterion_id}.", requisition.id)
                if committee is not None and score_type != committee:
                    raise ValidationError(
                        f"{scorer_id} sits on the {committee.value.lower()} committee and cannot "
                        f"score {score_type.value.lower()} criteria.",
                        requisition.id,
                    )
                scores.append(Score(criterion_id=s.criterion_id, score=s.score, type=score_type, comment=s.comment))
            built.append(ItemScore(quote_item_id=entry.quote_item_id, scores=scores))

        return CommitteeScoreSet(scorer_id=scorer_id, item_scores=built, comment=comment)

    def submit_scores(self, actor: Actor, requisition_id: str, now: Optional[datetime] = None) -> ScoringProgress:
        """Lock in the actor's scores; the last submission completes scoring."""
        self._authorize(actor, A.SUBMIT_SCORES, self.repository.load_requisition(requisition_id))
        now = self._now(now)

        def work() -> ScoringProgress:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, [S.SCORING_IN_PROGRESS], "submit scores")
            if actor.user_id not in requisition.committee_member_ids():
                raise ValidationError(f"{actor.user_id} is not on this requisition's committee.", requisition_id)

            unscored = [
                q.id for q in self.repository.load_quotations(requisition_id)
                if q.status == QuotationStatus.SUBMITTED
                and actor.user_id not in {s.scorer_id for s in q.scores}
            ]
            if unscored:
                raise PreconditionNotMet(
                    f"{len(unscored)} quotation(s) still need your scores.", requisition_id
                )

            self.repository.mark_scores_submitted(
                requisition_id,
                actor.user_id,
                audit=audit_entry(
                    actor.user_id, "SUBMIT_SCORES", "Requisition", requisition_id,
                    "Committee member submitted final scores", requisition_id,
                ),
            )
            submitted = self.repository.submitted_scorer_ids(requisition_id)
            if not StatusMachine.pending_scorers(requisition, submitted):
                updated = requisition.model_copy(deep=True)
                StatusMachine.transition(updated, S.SCORING_COMPLETE, now)
                self.repository.save_award_state(
                    updated,
                    audit=[audit_entry(
                        "system", "SCORING_COMPLETE", "Requisition", requisition_id,
                        "All committee members submitted scores", requisition_id,
                    )],
                )
                logger.info("[ScoringService] Scoring complete for %s", requisition_id)
                requisition = updated
            return self._progress(requisition, submitted, now)

        return self.locks.run(requisition_id, work)

    def scoring_progress(self, requisition_id: str, now: Optional[datetime] = None) -> ScoringProgress:
        requisition = self.repository.load_requisition(requisition_id)
        return self._progress(requisition, self.repository.submitted_scorer_ids(requisition_id), self._now(now))

    @staticmethod
    def _progress(requisition: Requisition, submitted: List[str], now: datetime) -> ScoringProgress:
        assigned = requisition.committee_member_ids()
        pending = StatusMachine.pending_scorers(requisition, submitted)
        overdue = []
        if requisition.scoring_deadline is not None and now > requisition.scoring_deadline:
            overdue = list(pending)
        return ScoringProgress(
            requisition_id=requisition.id,
            assigned=assigned,
            submitted=[m for m in assigned if m in submitted],
            pending=pending,
            complete=not pending,
            scoring_deadline=requisition.scoring_deadline,
            overdue=overdue,
        )

    def extend_scoring_deadline(
        self,
        actor: Actor,
        requisition_id: str,
        new_deadline: datetime,
        now: Optional[datetime] = None
    ) -> Requisition:
        """Move the committee's scoring deadline while scoring is open."""
        self._authorize(actor, A.EXTEND_SCORING_DEADLINE, self.repository.load_requisition(requisition_id))
        now = self._now(now)
        new_deadline = self._as_local(new_deadline)
        if new_deadline <= now:
            raise ValidationError("The scoring deadline must be in the future.", requisition_id)

        def work() -> Requisition:
            requisition = self.repository.load_requisition(requisition_id)
            StatusMachine.require_status(requisition, [S.SCORING_IN_PROGRESS], "extend the scoring deadline")
            previous = requisition.scoring_deadline

            updated = requisition.model_copy(deep=True)
            updated.scoring_deadline = new_deadline
            updated.updated_at = now
            updated.version = self.repository.save_award_state(
                updated,
                audit=[audit_entry(
                    actor.user_id, "EXTEND_SCORING_DEADLINE", "Requisition", requisition_id,
                    f"Scoring deadline moved from {previous.isoformat() if previous else 'N/A'} "
                    f"to {new_deadline.isoformat()}",
                    requisition_id,
                )],
            )
            logger.info("[ScoringService] Scoring deadline for %s extended to %s", requisition_id, new_deadline)
            return updated

        return self.locks.run(requisition_id, work)


# Singleton
_scoring_service = None


def get_scoring_service() -> ScoringService:
    global _scoring_service
    if _scoring_service is None:
        _scoring_service = ScoringService()
    return _scoring_service
