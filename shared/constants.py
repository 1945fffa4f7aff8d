"""
Shared constants for the award lifecycle service.
"""
from enum import Enum


# Requisition lifecycle
class RequisitionStatus(str, Enum):
    PRE_APPROVED = "PreApproved"
    ACCEPTING_QUOTES = "Accepting_Quotes"
    SCORING_IN_PROGRESS = "Scoring_In_Progress"
    SCORING_COMPLETE = "Scoring_Complete"
    AWARDED = "Awarded"
    AWARD_DECLINED = "Award_Declined"
    POST_APPROVED = "PostApproved"
    PO_CREATED = "PO_Created"
    PARTIALLY_CLOSED = "Partially_Closed"
    FULFILLED = "Fulfilled"
    CLOSED = "Closed"


# Stages in which committee scoring happens
SCORING_STAGES = [
    RequisitionStatus.SCORING_IN_PROGRESS,
    RequisitionStatus.SCORING_COMPLETE,
]

# Stages in which accepted awards may be put under contract
CONTRACT_STAGES = [
    RequisitionStatus.POST_APPROVED,
    RequisitionStatus.PO_CREATED,
    RequisitionStatus.PARTIALLY_CLOSED,
    RequisitionStatus.FULFILLED,
]

# Stages with a live RFQ that cancel/restart may compensate
ACTIVE_RFQ_STAGES = [
    RequisitionStatus.ACCEPTING_QUOTES,
    RequisitionStatus.SCORING_IN_PROGRESS,
    RequisitionStatus.SCORING_COMPLETE,
    RequisitionStatus.AWARDED,
    RequisitionStatus.AWARD_DECLINED,
]


class QuotationStatus(str, Enum):
    SUBMITTED = "Submitted"
    AWARDED = "Awarded"
    PARTIALLY_AWARDED = "Partially_Awarded"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    STANDBY = "Standby"
    REJECTED = "Rejected"
    FAILED = "Failed"
    INVOICE_SUBMITTED = "Invoice_Submitted"
    PENDING_AWARD = "Pending_Award"


class AwardItemStatus(str, Enum):
    AWARDED = "Awarded"
    STANDBY = "Standby"
    DECLINED = "Declined"
    ACCEPTED = "Accepted"
    PENDING_AWARD = "Pending_Award"
    FAILED_TO_AWARD = "Failed_to_Award"
    RESTARTED = "Restarted"
    REJECTED = "Rejected"


class AwardStrategy(str, Enum):
    ALL = "all"      # One vendor wins the whole requisition
    ITEM = "item"    # Each requisition item is awarded independently


class AwardAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class CascadeOutcome(str, Enum):
    ACCEPTED = "accepted"
    PROMOTED = "promoted"
    FAILED_TO_AWARD = "failed_to_award"


class ScoreType(str, Enum):
    FINANCIAL = "FINANCIAL"
    TECHNICAL = "TECHNICAL"


class PurchaseOrderStatus(str, Enum):
    ISSUED = "Issued"
    FULFILLED = "Fulfilled"


class ContractStatus(str, Enum):
    DRAFT = "Draft"
    ACTIVE = "Active"
    EXPIRED = "Expired"


class UserRole(str, Enum):
    REQUESTER = "Requester"
    PROCUREMENT_OFFICER = "Procurement_Officer"
    COMMITTEE_MEMBER = "Committee_Member"
    APPROVER = "Approver"
    VENDOR = "Vendor"
    ADMIN = "Admin"
    SYSTEM = "System"


# Mutating entry points checked by the authorizer
class RequisitionAction(str, Enum):
    CREATE = "create_requisition"
    ASSIGN_COMMITTEE = "assign_committee"
    SEND_RFQ = "send_rfq"
    SUBMIT_QUOTATION = "submit_quotation"
    START_SCORING = "start_scoring"
    REOPEN_RFQ = "reopen_rfq"
    RESTART_RFQ = "restart_rfq"
    RESTART_ITEM_RFQ = "restart_item_rfq"
    CANCEL_RFQ = "cancel_rfq"
    SCORE_QUOTATION = "score_quotation"
    SUBMIT_SCORES = "submit_scores"
    EXTEND_SCORING_DEADLINE = "extend_scoring_deadline"
    FINALIZE_AWARD = "finalize_award"
    RESPOND_AWARD = "respond_award"
    EXPIRE_AWARDS = "expire_awards"
    APPROVE_AWARD = "approve_award"
    CREATE_PURCHASE_ORDERS = "create_purchase_orders"
    FULFILL_PURCHASE_ORDER = "fulfill_purchase_order"
    CREATE_CONTRACT = "create_contract"
    CLOSE = "close_requisition"


DEADLINE_PASSED_REASON = "deadline passed"

# Score bounds for a single criterion
MIN_SCORE = 0.0
MAX_SCORE = 100.0
