"""
Authorization for mutating award entry points.

Identity itself is resolved outside this service; the authorizer only
decides whether an already-identified actor may perform an action on a
requisition.
"""
from typing import Dict, Optional, Protocol, Set

from backend.award.models import Actor, Requisition
from shared.constants import RequisitionAction as A, UserRole as R


class Authorizer(Protocol):
    def is_authorized(self, actor: Actor, action: A, requisition: Optional[Requisition]) -> bool:
        ...


class RoleAuthorizer:
    """
    Fixed role -> action permissions.

    Committee members are further limited to requisitions they sit on.
    Vendor ownership of a specific award is checked by the award service.
    """

    ROLE_PERMISSIONS: Dict[R, Set[A]] = {
        R.REQUESTER: {A.CREATE},
        R.PROCUREMENT_OFFICER: {
            A.CREATE, A.ASSIGN_COMMITTEE, A.SEND_RFQ, A.START_SCORING, A.REOPEN_RFQ,
            A.RESTART_RFQ, A.RESTART_ITEM_RFQ, A.CANCEL_RFQ, A.EXTEND_SCORING_DEADLINE,
            A.FINALIZE_AWARD, A.EXPIRE_AWARDS, A.CREATE_PURCHASE_ORDERS,
            A.FULFILL_PURCHASE_ORDER, A.CREATE_CONTRACT, A.CLOSE,
        },
        R.COMMITTEE_MEMBER: {A.SCORE_QUOTATION, A.SUBMIT_SCORES, A.FINALIZE_AWARD},
        R.APPROVER: {A.APPROVE_AWARD},
        R.VENDOR: {A.SUBMIT_QUOTATION, A.RESPOND_AWARD},
        R.SYSTEM: {A.EXPIRE_AWARDS, A.START_SCORING},
    }

    COMMITTEE_SCOPED = {A.SCORE_QUOTATION, A.SUBMIT_SCORES, A.FINALIZE_AWARD}

    def is_authorized(self, actor: Actor, action: A, requisition: Optional[Requisition]) -> bool:
        if actor.role == R.ADMIN:
            return True
        if action not in self.ROLE_PERMISSIONS.get(actor.role, set()):
            return False
        if actor.role == R.VENDOR and not actor.vendor_id:
            return False
        if actor.role == R.COMMITTEE_MEMBER and action in self.COMMITTEE_SCOPED:
            return requisition is not None and actor.user_id in requisition.committee_member_ids()
        return True


SYSTEM_ACTOR = Actor(user_id="system", role=R.SYSTEM)
