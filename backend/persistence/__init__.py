"""Persistence layer - SQLite award store."""
from backend.persistence.database import configure_engine, get_engine, init_db
from backend.persistence.models import (
    RequisitionRecord, QuotationRecord, ScoreSetRecord,
    CommitteeAssignment, PurchaseOrderRecord, ContractRecord, AuditLog
)
