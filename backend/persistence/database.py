"""
Database connection and initialization for the award store.
"""
from pathlib import Path
from typing import Optional

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from backend.config import get_settings

# Engine singleton
_engine = None


def _build_engine(db_url: str):
    if db_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory DB
            return create_engine(db_url, echo=False, connect_args=connect_args, poolclass=StaticPool)
        if db_url.startswith("sqlite:///"):
            Path(db_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(db_url, echo=False, connect_args=connect_args)
    return create_engine(db_url, echo=False)


def get_engine():
    """Get or create database engine."""
    global _engine
    if _engine is None:
        _engine = _build_engine(get_settings().db_url)
    return _engine


def configure_engine(db_url: Optional[str]) -> None:
    """Point the store at ``db_url`` (``None`` falls back to settings on next use)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(db_url) if db_url else None


def init_db():
    """Initialize database tables."""
    from backend.persistence.models import (  # noqa: F401
        RequisitionRecord, QuotationRecord, ScoreSetRecord,
        CommitteeAssignment, PurchaseOrderRecord, ContractRecord, AuditLog
    )
    engine = get_engine()
    SQLModel.metadata.create_all(engine)


def get_db_session() -> Session:
    """Get a database session (non-generator version)."""
    engine = get_engine()
    return Session(engine)
