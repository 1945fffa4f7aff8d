"""
Domain records for the award core.

These are plain in-memory records. The persistence layer maps them to and
from SQLModel rows; the core only ever sees these.
"""
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from backend.award.errors import ValidationError
from shared.constants import (
    AwardItemStatus, AwardStrategy, ContractStatus, PurchaseOrderStatus, QuotationStatus,
    RequisitionStatus, ScoreType, UserRole
)


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


# ============================================================
# EVALUATION CRITERIA
# ============================================================

class Criterion(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    name: str
    weight: float  # % within its group


class EvaluationCriteria(BaseModel):
    """Financial/technical criterion groups with their overall weights."""
    financial_weight: float = 0.0
    technical_weight: float = 0.0
    financial_criteria: List[Criterion] = Field(default_factory=list)
    technical_criteria: List[Criterion] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.financial_criteria and not self.technical_criteria

    def all_criteria(self) -> List[Criterion]:
        return self.financial_criteria + self.technical_criteria

    def validate_weights(self) -> None:
        """
        Check that weights add up.

        Each non-empty group must sum to 100 and the two group weights
        must sum to 100 as well.
        """
        if self.is_empty():
            return

        groups = (
            ("financial", self.financial_criteria),
            ("technical", self.technical_criteria),
        )
        for label, criteria in groups:
            if criteria and abs(sum(c.weight for c in criteria) - 100.0) > 1e-6:
                raise ValidationError(f"The {label} criteria weights must sum to 100.")

        if abs(self.financial_weight + self.technical_weight - 100.0) > 1e-6:
            raise ValidationError("Financial and technical weights must sum to 100.")

        ids = [c.id for c in self.all_criteria()]
        if len(ids) != len(set(ids)):
            raise ValidationError("Criterion ids must be unique.")


class RFQSettings(BaseModel):
    award_strategy: AwardStrategy = AwardStrategy.ALL
    allow_quote_edits: bool = True
    technical_evaluator_sees_prices: bool = True


# ============================================================
# REQUISITION
# ============================================================

class PerItemAwardDetail(BaseModel):
    """One candidate proposal for one requisition item (per-item strategy)."""
    id: str = Field(default_factory=generate_uuid)
    requisition_item_id: str
    quotation_id: str
    quote_item_id: str
    vendor_id: str
    vendor_name: Optional[str] = None
    rank: int
    status: AwardItemStatus
    score: float = 0.0
    response_deadline: Optional[datetime] = None
    decline_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


class RequisitionItem(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(default=0.0, ge=0)
    per_item_award_details: List[PerItemAwardDetail] = Field(default_factory=list)


class Requisition(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    title: str
    status: RequisitionStatus = RequisitionStatus.PRE_APPROVED
    items: List[RequisitionItem] = Field(default_factory=list)
    evaluation_criteria: EvaluationCriteria = Field(default_factory=EvaluationCriteria)
    rfq_settings: RFQSettings = Field(default_factory=RFQSettings)

    # Deadlines
    deadline: Optional[datetime] = None
    scoring_deadline: Optional[datetime] = None
    award_response_deadline: Optional[datetime] = None
    award_response_duration_minutes: Optional[int] = None

    # Committee
    financial_committee_ids: List[str] = Field(default_factory=list)
    technical_committee_ids: List[str] = Field(default_factory=list)

    # Optimistic concurrency
    version: int = 0

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def strategy(self) -> AwardStrategy:
        return self.rfq_settings.award_strategy

    def committee_member_ids(self) -> List[str]:
        """Financial and technical members, deduplicated, in assignment order."""
        seen = []
        for member_id in self.financial_committee_ids + self.technical_committee_ids:
            if member_id not in seen:
                seen.append(member_id)
        return seen

    def validate_committees(self) -> None:
        overlap = set(self.financial_committee_ids) & set(self.technical_committee_ids)
        if overlap:
            raise ValidationError(
                f"Committee members cannot sit on both committees: {sorted(overlap)}",
                self.id,
            )

    def get_item(self, item_id: str) -> Optional[RequisitionItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_detail(self, detail_id: str) -> Optional[PerItemAwardDetail]:
        for item in self.items:
            for detail in item.per_item_award_details:
                if detail.id == detail_id:
                    return detail
        return None


# ============================================================
# QUOTATIONS AND SCORES
# ============================================================

class QuoteItem(BaseModel):
    """A vendor's priced proposal against one requisition item."""
    id: str = Field(default_factory=generate_uuid)
    requisition_item_id: str
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(default=0.0, ge=0)

    @property
    def total_price(self) -> float:
        return self.quantity * self.unit_price


class Score(BaseModel):
    criterion_id: str
    score: float
    type: ScoreType = ScoreType.FINANCIAL
    comment: Optional[str] = None


class ItemScore(BaseModel):
    quote_item_id: str
    scores: List[Score] = Field(default_factory=list)
    final_score: float = 0.0


class CommitteeScoreSet(BaseModel):
    """All scores one committee member gave one quotation."""
    scorer_id: str
    item_scores: List[ItemScore] = Field(default_factory=list)
    final_score: float = 0.0
    comment: Optional[str] = None


class Quotation(BaseModel):
    id: str = Field(default_factory=generate_uuid)
    requisition_id: str
    vendor_id: str
    vendor_name: Optional[str] = None
    status: QuotationStatus = QuotationStatus.SUBMITTED
    rank: Optional[int] = None
    items: List[QuoteItem] = Field(default_factory=list)
    scores: List[CommitteeScoreSet] = Field(default_factory=list)
    final_average_score: float = 0.0
    response_deadline: Optional[datetime] = None
    decline_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    def get_item(self, quote_item_id: str) -> Optional[QuoteItem]:
        for item in self.items:
            if item.id == quote_item_id:
                return item
        return None


class PurchaseOrder(BaseModel):
    id: str = Field(default_factory=lambda: f"PO-{uuid4().hex[:8].upper()}")
    requisition_id: str
    vendor_id: str
    quotation_id: str
    items: List[QuoteItem] = Field(default_factory=list)
    total_amount: float = 0.0
    status: PurchaseOrderStatus = PurchaseOrderStatus.ISSUED
    created_at: datetime = Field(default_factory=datetime.now)


class Contract(BaseModel):
    """
    Contract covering one vendor's accepted award on a requisition.

    ``status`` is stored as Draft; readers see it through ``status_at``.
    """
    id: str = Field(default_factory=lambda: f"CN-{uuid4().hex[:8].upper()}")
    requisition_id: str
    vendor_id: str
    quotation_id: str
    items: List[QuoteItem] = Field(default_factory=list)
    total_amount: float = 0.0
    start_date: datetime
    end_date: datetime
    status: ContractStatus = ContractStatus.DRAFT
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    def status_at(self, now: datetime) -> ContractStatus:
        if self.start_date <= now <= self.end_date:
            return ContractStatus.ACTIVE
        if now > self.end_date:
            return ContractStatus.EXPIRED
        return ContractStatus.DRAFT


# ============================================================
# CALLER
# ============================================================

class Actor(BaseModel):
    """Identity of the caller, resolved by the (external) auth layer."""
    user_id: str
    role: UserRole
    vendor_id: Optional[str] = None
