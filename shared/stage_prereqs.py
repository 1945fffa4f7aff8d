"""
Requisition stage definitions.

Single source of truth for what each requisition status means and which
actions may be attempted while in it. Used by the requisition view and the
API to tell callers what they can do next.
"""

from typing import Dict, List, Any

from shared.constants import RequisitionAction as A, RequisitionStatus as S

STAGE_PREREQS: Dict[S, Dict[str, Any]] = {
    S.PRE_APPROVED: {
        "description": "Approved requisition, RFQ not yet sent",
        "actions": [A.ASSIGN_COMMITTEE, A.SEND_RFQ],
    },
    S.ACCEPTING_QUOTES: {
        "description": "Vendors are submitting quotations",
        "actions": [
            A.SUBMIT_QUOTATION, A.ASSIGN_COMMITTEE, A.START_SCORING,
            A.REOPEN_RFQ, A.RESTART_RFQ, A.CANCEL_RFQ,
        ],
    },
    S.SCORING_IN_PROGRESS: {
        "description": "Committee is scoring quotations",
        "actions": [
            A.SCORE_QUOTATION, A.SUBMIT_SCORES, A.FINALIZE_AWARD, A.EXTEND_SCORING_DEADLINE,
            A.ASSIGN_COMMITTEE, A.RESTART_RFQ, A.CANCEL_RFQ,
        ],
    },
    S.SCORING_COMPLETE: {
        "description": "All committee members submitted scores",
        "actions": [A.FINALIZE_AWARD, A.RESTART_RFQ, A.CANCEL_RFQ],
    },
    S.AWARDED: {
        "description": "Awaiting vendor responses",
        "actions": [
            A.RESPOND_AWARD, A.EXPIRE_AWARDS, A.APPROVE_AWARD,
            A.RESTART_ITEM_RFQ, A.RESTART_RFQ, A.CANCEL_RFQ,
        ],
    },
    S.AWARD_DECLINED: {
        "description": "Every standby declined; the RFQ must be restarted",
        "actions": [A.RESTART_ITEM_RFQ, A.RESTART_RFQ, A.CANCEL_RFQ],
    },
    S.POST_APPROVED: {
        "description": "Award approved, ready for purchase orders",
        "actions": [A.CREATE_PURCHASE_ORDERS, A.CREATE_CONTRACT],
    },
    S.PO_CREATED: {
        "description": "Purchase orders issued",
        "actions": [A.FULFILL_PURCHASE_ORDER, A.CREATE_CONTRACT],
    },
    S.PARTIALLY_CLOSED: {
        "description": "Some purchase orders fulfilled",
        "actions": [A.FULFILL_PURCHASE_ORDER, A.CREATE_CONTRACT, A.CLOSE],
    },
    S.FULFILLED: {
        "description": "All purchase orders fulfilled",
        "actions": [A.CREATE_CONTRACT, A.CLOSE],
    },
    S.CLOSED: {
        "description": "Archived",
        "actions": [],
    },
}


def get_stage_description(status: S) -> str:
    """Get human-readable description for a requisition status."""
    prereqs = STAGE_PREREQS.get(status, {})
    return prereqs.get("description", str(status))


def allowed_actions(status: S) -> List[str]:
    """Actions that may be attempted in ``status``."""
    return [a.value for a in STAGE_PREREQS.get(status, {}).get("actions", [])]
