"""
Requisition status machine.

Holds the transition graph for a requisition and the guard predicates on
its edges. Guards take an injected ``AwardSettings`` instead of reading
global configuration.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from backend.award.errors import InvalidTransition, PreconditionNotMet
from backend.award.models import Quotation, Requisition
from backend.award.projection import scopes
from backend.config import AwardSettings
from shared.constants import RequisitionStatus, SCORING_STAGES

S = RequisitionStatus


class StatusMachine:
    """
    Governs requisition status transitions.

    Only edges listed in ALLOWED_TRANSITIONS are ever taken; the guard
    methods decide whether an edge may be taken right now.
    """

    ALLOWED_TRANSITIONS: Dict[RequisitionStatus, List[RequisitionStatus]] = {
        S.PRE_APPROVED: [S.ACCEPTING_QUOTES],
        S.ACCEPTING_QUOTES: [S.SCORING_IN_PROGRESS, S.PRE_APPROVED],
        S.SCORING_IN_PROGRESS: [S.SCORING_COMPLETE, S.AWARDED, S.PRE_APPROVED],
        S.SCORING_COMPLETE: [S.AWARDED, S.PRE_APPROVED],
        S.AWARDED: [S.AWARD_DECLINED, S.POST_APPROVED, S.ACCEPTING_QUOTES, S.PRE_APPROVED],
        S.AWARD_DECLINED: [S.AWARDED, S.ACCEPTING_QUOTES, S.PRE_APPROVED],
        S.POST_APPROVED: [S.PO_CREATED],
        S.PO_CREATED: [S.PARTIALLY_CLOSED, S.FULFILLED],
        S.PARTIALLY_CLOSED: [S.FULFILLED, S.CLOSED],
        S.FULFILLED: [S.CLOSED],
        S.CLOSED: [],  # Terminal
    }

    @classmethod
    def validate_transition(
        cls,
        current: RequisitionStatus,
        target: RequisitionStatus
    ) -> Tuple[bool, Optional[str]]:
        """
        Validate if a status transition is allowed.

        Returns:
            (is_valid, error_message)
        """
        if current not in cls.ALLOWED_TRANSITIONS:
            return False, f"Unknown current status: {current}"

        allowed = cls.ALLOWED_TRANSITIONS[current]
        if target not in allowed:
            allowed_names = [s.value for s in allowed]
            return False, (
                f"Cannot transition from {current.value} to {target.value}. "
                f"Allowed: {allowed_names}"
            )
        return True, None

    @classmethod
    def require_transition(cls, requisition: Requisition, target: RequisitionStatus) -> None:
        """Raise InvalidTransition unless ``requisition`` may move to ``target``."""
        ok, message = cls.validate_transition(requisition.status, target)
        if not ok:
            raise InvalidTransition(message, requisition.id)

    @classmethod
    def transition(cls, requisition: Requisition, target: RequisitionStatus, now: datetime) -> None:
        """Move ``requisition`` to ``target`` in place, enforcing the graph."""
        if requisition.status == target:
            return
        cls.require_transition(requisition, target)
        requisition.status = target
        requisition.updated_at = now

    @classmethod
    def require_status(
        cls,
        requisition: Requisition,
        allowed: Iterable[RequisitionStatus],
        action: str
    ) -> None:
        allowed = list(allowed)
        if requisition.status not in allowed:
            raise InvalidTransition(
                f"Cannot {action} while requisition is {requisition.status.value}. "
                f"Allowed in: {[s.value for s in allowed]}",
                requisition.id,
            )

    # ============================================================
    # GUARDS
    # ============================================================

    @staticmethod
    def deadline_passed(requisition: Requisition, now: datetime) -> bool:
        return requisition.deadline is not None and now > requisition.deadline

    @classmethod
    def can_start_scoring(
        cls,
        requisition: Requisition,
        quotation_count: int,
        settings: AwardSettings,
        now: datetime
    ) -> Tuple[bool, Optional[str]]:
        """Accepting_Quotes -> Scoring_In_Progress: deadline passed and quorum met."""
        if requisition.status != S.ACCEPTING_QUOTES:
            return False, f"Requisition is {requisition.status.value}, not accepting quotes"
        if not cls.deadline_passed(requisition, now):
            return False, "The quotation deadline has not passed yet"
        if quotation_count < settings.committee_quorum:
            return False, (
                f"Only {quotation_count} quotation(s) received; "
                f"{settings.committee_quorum} required"
            )
        return True, None

    @classmethod
    def needs_restart(cls, requisition: Requisition, quotation_count: int, now: datetime) -> bool:
        """Deadline passed with zero bids: only an RFQ restart helps."""
        return (
            requisition.status == S.ACCEPTING_QUOTES
            and cls.deadline_passed(requisition, now)
            and quotation_count == 0
        )

    @classmethod
    def needs_reopen(
        cls,
        requisition: Requisition,
        quotation_count: int,
        settings: AwardSettings,
        now: datetime
    ) -> bool:
        """Deadline passed with some bids but fewer than the quorum."""
        return (
            requisition.status == S.ACCEPTING_QUOTES
            and cls.deadline_passed(requisition, now)
            and 0 < quotation_count < settings.committee_quorum
        )

    @staticmethod
    def pending_scorers(requisition: Requisition, submitted_ids: Iterable[str]) -> List[str]:
        submitted = set(submitted_ids)
        return [m for m in requisition.committee_member_ids() if m not in submitted]

    @classmethod
    def check_finalize(cls, requisition: Requisition, submitted_ids: Iterable[str]) -> None:
        """
        Award finalization precondition.

        The requisition must be in a scoring stage and every assigned
        committee member must have submitted scores.
        """
        if requisition.status not in SCORING_STAGES:
            raise InvalidTransition(
                f"Cannot finalize an award while requisition is {requisition.status.value}",
                requisition.id,
            )
        pending = cls.pending_scorers(requisition, submitted_ids)
        if pending:
            raise PreconditionNotMet(
                f"Waiting for {len(pending)} more scorer(s) to submit their scores.",
                requisition.id,
            )

    @classmethod
    def can_post_approve(
        cls,
        requisition: Requisition,
        quotations: List[Quotation],
        approval_granted: bool
    ) -> Tuple[bool, Optional[str]]:
        """
        Awarded -> PostApproved.

        The approval chain must have completed, no scope may still be waiting
        on a vendor or a promotion, and at least one award must be accepted.
        """
        if requisition.status != S.AWARDED:
            return False, f"Requisition is {requisition.status.value}, not Awarded"
        if not approval_granted:
            return False, "The approval chain has not completed"

        accepted = 0
        for scope_id, candidates in scopes(requisition, quotations).items():
            statuses = {c.status.value for c in candidates}
            if statuses & {"Pending_Award", "Awarded"}:
                return False, f"Scope {scope_id} is still waiting for a vendor response"
            if "Accepted" in statuses:
                accepted += 1
        if accepted == 0:
            return False, "No vendor has accepted an award"
        return True, None
