"""
Shared Pydantic schemas for API requests and responses.
All API request/response models are defined here.
"""
from typing import Optional, List, Dict
from datetime import datetime
from pydantic import BaseModel, Field

from backend.award.models import (
    Contract, EvaluationCriteria, PurchaseOrder, Quotation, RFQSettings, Requisition
)
from shared.constants import AwardAction, CascadeOutcome


# ============================================================
# REQUISITION SCHEMAS
# ============================================================

class RequisitionItemInput(BaseModel):
    """Line item on a new requisition."""
    id: Optional[str] = None
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(default=0.0, ge=0)


class CreateRequisitionRequest(BaseModel):
    """Request to register an approved requisition."""
    title: str
    items: List[RequisitionItemInput]
    evaluation_criteria: EvaluationCriteria = Field(default_factory=EvaluationCriteria)
    rfq_settings: RFQSettings = Field(default_factory=RFQSettings)
    financial_committee_ids: List[str] = Field(default_factory=list)
    technical_committee_ids: List[str] = Field(default_factory=list)


class RequisitionView(BaseModel):
    """Requisition with projected quotation statuses."""
    requisition: Requisition
    quotations: List[Quotation] = Field(default_factory=list)
    purchase_orders: List[PurchaseOrder] = Field(default_factory=list)
    allowed_actions: List[str] = Field(default_factory=list)
    stage_description: str = ""


class RequisitionListResponse(BaseModel):
    requisitions: List[Requisition]
    total_count: int
    filters_applied: Dict[str, Optional[str]] = Field(default_factory=dict)


# ============================================================
# RFQ SCHEMAS
# ============================================================

class AssignCommitteeRequest(BaseModel):
    financial_committee_ids: List[str] = Field(default_factory=list)
    technical_committee_ids: List[str] = Field(default_factory=list)
    scoring_deadline: Optional[datetime] = None


class SendRFQRequest(BaseModel):
    deadline: datetime


class ReopenRFQRequest(BaseModel):
    new_deadline: datetime


class RestartRFQRequest(BaseModel):
    reason: str = ""


class RestartItemRFQRequest(BaseModel):
    """Re-tender failed items; accepted items are left alone."""
    item_ids: List[str]
    new_deadline: datetime
    vendor_ids: List[str] = Field(default_factory=list)
    reason: str = ""


class QuoteItemInput(BaseModel):
    """A vendor's price for one requisition item."""
    requisition_item_id: str
    name: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(ge=0)


class SubmitQuotationRequest(BaseModel):
    vendor_name: Optional[str] = None
    items: List[QuoteItemInput]


# ============================================================
# SCORING SCHEMAS
# ============================================================

class ScoreInput(BaseModel):
    criterion_id: str
    score: float
    comment: Optional[str] = None


class ItemScoreInput(BaseModel):
    quote_item_id: str
    scores: List[ScoreInput] = Field(default_factory=list)


class ScoreQuotationRequest(BaseModel):
    item_scores: List[ItemScoreInput]
    comment: Optional[str] = None


class ScoringProgress(BaseModel):
    """Which committee members have submitted their scores."""
    requisition_id: str
    assigned: List[str] = Field(default_factory=list)
    submitted: List[str] = Field(default_factory=list)
    pending: List[str] = Field(default_factory=list)
    complete: bool = False
    scoring_deadline: Optional[datetime] = None
    overdue: List[str] = Field(default_factory=list)  # pending members past the deadline


class ExtendScoringDeadlineRequest(BaseModel):
    new_deadline: datetime


# ============================================================
# AWARD SCHEMAS
# ============================================================

class FinalizeAwardRequest(BaseModel):
    """Finalize the award; overrides are optional."""
    vendor_id: Optional[str] = None
    item_winners: Dict[str, str] = Field(default_factory=dict)
    award_response_deadline: Optional[datetime] = None


class RespondRequest(BaseModel):
    """A vendor's answer to an award offer."""
    target_id: str
    action: AwardAction
    reason: Optional[str] = None


class CascadeResponse(BaseModel):
    outcome: CascadeOutcome
    target_id: str
    scope_id: str
    promoted_target_id: Optional[str] = None
    recovery_action: Optional[str] = None
    reason: Optional[str] = None
    requisition_status: str
    message: str


class ExpiryResponse(BaseModel):
    requisition_id: str
    expired: List[CascadeResponse] = Field(default_factory=list)


class ApprovalRequest(BaseModel):
    comment: Optional[str] = None


class CreateContractRequest(BaseModel):
    vendor_id: str
    start_date: datetime
    end_date: datetime


class ContractListResponse(BaseModel):
    contracts: List[Contract]
    total_count: int


# ============================================================
# GENERIC
# ============================================================

class HealthCheckResponse(BaseModel):
    status: str
    version: str
    components: Dict[str, str] = Field(default_factory=dict)
