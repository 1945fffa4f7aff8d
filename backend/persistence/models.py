"""
SQLModel models for the award store.
Tables:
- requisitions: requisition header, items and award details (JSON), version
- quotations: one per vendor per requisition, quote items (JSON)
- committee_score_sets: one per scorer per quotation, item scores (JSON)
- committee_assignments: committee members and their submission flag
- purchase_orders: POs issued for accepted awards
- contracts: contracts drawn up for accepted awards
- audit_log: every mutating action
"""
from typing import Optional
from datetime import datetime
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class RequisitionRecord(SQLModel, table=True):
    """Requisition header and its award state."""
    __tablename__ = "requisitions"

    id: Optional[int] = Field(default=None, primary_key=True)
    requisition_id: str = Field(unique=True, index=True)
    title: str
    status: str = Field(default="PreApproved", index=True)

    # Nested structures (JSON)
    items_json: str = Field(default="[]")  # items + per-item award details
    evaluation_criteria_json: Optional[str] = None
    rfq_settings_json: Optional[str] = None
    financial_committee_json: str = Field(default="[]")
    technical_committee_json: str = Field(default="[]")

    # Deadlines
    deadline: Optional[datetime] = None
    scoring_deadline: Optional[datetime] = None
    award_response_deadline: Optional[datetime] = None
    award_response_duration_minutes: Optional[int] = None

    # Optimistic concurrency
    version: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class QuotationRecord(SQLModel, table=True):
    """A vendor's quotation against a requisition."""
    __tablename__ = "quotations"
    __table_args__ = (UniqueConstraint("requisition_id", "vendor_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    quotation_id: str = Field(unique=True, index=True)
    requisition_id: str = Field(index=True)
    vendor_id: str = Field(index=True)
    vendor_name: Optional[str] = None

    status: str = Field(default="Submitted")
    rank: Optional[int] = None
    final_average_score: float = Field(default=0.0)

    items_json: str = Field(default="[]")

    # Response window
    response_deadline: Optional[datetime] = None
    decline_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.now)


class ScoreSetRecord(SQLModel, table=True):
    """One committee member's scores for one quotation."""
    __tablename__ = "committee_score_sets"
    __table_args__ = (UniqueConstraint("quotation_id", "scorer_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    quotation_id: str = Field(index=True)
    scorer_id: str = Field(index=True)
    item_scores_json: str = Field(default="[]")
    final_score: float = Field(default=0.0)
    comment: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.now)


class CommitteeAssignment(SQLModel, table=True):
    """Committee member assigned to score a requisition."""
    __tablename__ = "committee_assignments"
    __table_args__ = (UniqueConstraint("requisition_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    requisition_id: str = Field(index=True)
    user_id: str = Field(index=True)
    scores_submitted: bool = Field(default=False)
    submitted_at: Optional[datetime] = None


class PurchaseOrderRecord(SQLModel, table=True):
    """Purchase order issued for an accepted award."""
    __tablename__ = "purchase_orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    po_id: str = Field(unique=True, index=True)
    requisition_id: str = Field(index=True)
    vendor_id: str
    quotation_id: str
    items_json: str = Field(default="[]")
    total_amount: float = Field(default=0.0)
    status: str = Field(default="Issued")
    created_at: datetime = Field(default_factory=datetime.now)


class ContractRecord(SQLModel, table=True):
    """Contract for one vendor's accepted award."""
    __tablename__ = "contracts"
    __table_args__ = (UniqueConstraint("requisition_id", "vendor_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    contract_id: str = Field(unique=True, index=True)
    requisition_id: str = Field(index=True)
    vendor_id: str = Field(index=True)
    quotation_id: str
    items_json: str = Field(default="[]")
    total_amount: float = Field(default=0.0)
    start_date: datetime
    end_date: datetime
    status: str = Field(default="Draft")
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


class AuditLog(SQLModel, table=True):
    """Log of every mutating action."""
    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=datetime.now)
    user_id: str
    action: str = Field(index=True)
    entity: str  # "Requisition", "Quotation", "PurchaseOrder", "Contract"
    entity_id: str = Field(index=True)
    requisition_id: Optional[str] = Field(default=None, index=True)
    details: str = ""
