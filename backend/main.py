"""
FastAPI backend for the award lifecycle service.

This is the only entry point for clients. All business rules live in the
services; endpoints translate HTTP to service calls and back.
"""
import logging
import os
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Import services
from backend.award.errors import AwardError, Unauthorized
from backend.award.finalizer import AwardSelection
from backend.award.models import Actor, CommitteeScoreSet, Contract, PurchaseOrder, Quotation, Requisition
from backend.award.cascade import CascadeResult
from backend.config import get_settings
from backend.persistence.database import init_db
from backend.services.award_service import get_award_service
from backend.services.deadline_sweeper import DeadlineSweeper
from backend.services.rfq_service import get_rfq_service
from backend.services.scoring_service import get_scoring_service

# Import shared schemas
from shared.schemas import (
    ApprovalRequest, AssignCommitteeRequest, CascadeResponse, ContractListResponse,
    CreateContractRequest, CreateRequisitionRequest, ExpiryResponse, ExtendScoringDeadlineRequest,
    FinalizeAwardRequest, HealthCheckResponse, ReopenRFQRequest, RequisitionListResponse,
    RequisitionView, RespondRequest, RestartItemRFQRequest, RestartRFQRequest,
    ScoreQuotationRequest, ScoringProgress, SendRFQRequest, SubmitQuotationRequest
)
from shared.constants import UserRole

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    init_db()
    logger.info("[API] Database initialized")
    sweeper = DeadlineSweeper(get_settings().deadline_sweep_seconds)
    sweeper.start()
    yield
    # Shutdown
    await sweeper.stop()
    logger.info("[API] Shutting down")


# Create FastAPI app
app = FastAPI(
    title="Award Lifecycle API",
    description="Requisition RFQ, scoring and award lifecycle",
    version=APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AwardError)
async def award_error_handler(request: Request, exc: AwardError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "requisition_id": exc.requisition_id,
        },
    )


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_vendor_id: Optional[str] = Header(None),
) -> Actor:
    """Caller identity, resolved upstream and forwarded in headers."""
    if not x_user_id or not x_user_role:
        raise Unauthorized("Missing caller identity headers.")
    try:
        role = UserRole(x_user_role)
    except ValueError:
        raise Unauthorized(f"Unknown role: {x_user_role}")
    return Actor(user_id=x_user_id, role=role, vendor_id=x_vendor_id)


def _cascade_response(result: CascadeResult) -> CascadeResponse:
    return CascadeResponse(
        outcome=result.outcome,
        target_id=result.target_id,
        scope_id=result.scope_id,
        promoted_target_id=result.promoted_target_id,
        recovery_action=result.recovery_action,
        reason=result.reason,
        requisition_status=result.requisition.status.value,
        message=result.message,
    )


# ============================================================
# HEALTH CHECK
# ============================================================

@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint."""
    return HealthCheckResponse(
        status="healthy",
        version=APP_VERSION,
        components={
            "database": "ok",
            "deadline_sweep": "on" if get_settings().deadline_sweep_seconds else "lazy",
        }
    )


# ============================================================
# REQUISITION ENDPOINTS
# ============================================================

@app.get("/api/requisitions", response_model=RequisitionListResponse)
def list_requisitions(status: Optional[str] = None, limit: int = 100, offset: int = 0):
    """Get list of requisitions."""
    requisitions = get_award_service().list_requisitions(status=status, limit=limit, offset=offset)
    return RequisitionListResponse(
        requisitions=requisitions,
        total_count=len(requisitions),
        filters_applied={"status": status},
    )


@app.post("/api/requisitions", response_model=Requisition)
def create_requisition(request: CreateRequisitionRequest, actor: Actor = Depends(get_actor)):
    """Register an approved requisition."""
    return get_rfq_service().create_requisition(actor, request)


@app.get("/api/requisitions/{requisition_id}", response_model=RequisitionView)
def get_requisition(requisition_id: str):
    """Get a requisition with its quotations and purchase orders."""
    return get_award_service().get_requisition(requisition_id)


@app.get("/api/requisitions/{requisition_id}/audit")
def get_audit_trail(requisition_id: str):
    """Audit trail for a requisition, oldest first."""
    entries = get_award_service().audit_trail(requisition_id)
    return {"entries": [e.model_dump(mode="json") for e in entries], "count": len(entries)}


# ============================================================
# RFQ ENDPOINTS
# ============================================================

@app.post("/api/requisitions/{requisition_id}/assign-committee", response_model=Requisition)
def assign_committee(
    requisition_id: str,
    request: AssignCommitteeRequest,
    actor: Actor = Depends(get_actor)
):
    return get_rfq_service().assign_committee(
        actor,
        requisition_id,
        financial_committee_ids=request.financial_committee_ids,
        technical_committee_ids=request.technical_committee_ids,
        scoring_deadline=request.scoring_deadline,
    )


@app.post("/api/requisitions/{requisition_id}/send-rfq", response_model=Requisition)
def send_rfq(requisition_id: str, request: SendRFQRequest, actor: Actor = Depends(get_actor)):
    return get_rfq_service().send_rfq(actor, requisition_id, request.deadline)


@app.post("/api/requisitions/{requisition_id}/quotations", response_model=Quotation)
def submit_quotation(
    requisition_id: str,
    request: SubmitQuotationRequest,
    actor: Actor = Depends(get_actor)
):
    return get_rfq_service().submit_quotation(
        actor, requisition_id, request.items, vendor_name=request.vendor_name
    )


@app.post("/api/requisitions/{requisition_id}/start-scoring", response_model=Requisition)
def start_scoring(requisition_id: str, actor: Actor = Depends(get_actor)):
    return get_rfq_service().start_scoring(actor, requisition_id)


@app.post("/api/requisitions/{requisition_id}/reopen-rfq", response_model=Requisition)
def reopen_rfq(requisition_id: str, request: ReopenRFQRequest, actor: Actor = Depends(get_actor)):
    return get_rfq_service().reopen_rfq(actor, requisition_id, request.new_deadline)


@app.post("/api/requisitions/{requisition_id}/restart-rfq", response_model=Requisition)
def restart_rfq(requisition_id: str, request: RestartRFQRequest, actor: Actor = Depends(get_actor)):
    return get_rfq_service().restart_rfq(actor, requisition_id, reason=request.reason)


@app.post("/api/requisitions/{requisition_id}/restart-item-rfq", response_model=Requisition)
def restart_item_rfq(requisition_id: str, request: RestartItemRFQRequest, actor: Actor = Depends(get_actor)):
    """Re-tender failed items; accepted items keep their awards."""
    return get_rfq_service().restart_item_rfq(
        actor,
        requisition_id,
        request.item_ids,
        request.new_deadline,
        vendor_ids=request.vendor_ids,
        reason=request.reason,
    )


@app.post("/api/requisitions/{requisition_id}/cancel-rfq", response_model=Requisition)
def cancel_rfq(requisition_id: str, request: RestartRFQRequest, actor: Actor = Depends(get_actor)):
    return get_rfq_service().cancel_rfq(actor, requisition_id, reason=request.reason)


# ============================================================
# SCORING ENDPOINTS
# ============================================================

@app.post(
    "/api/requisitions/{requisition_id}/quotations/{quotation_id}/score",
    response_model=CommitteeScoreSet
)
def score_quotation(
    requisition_id: str,
    quotation_id: str,
    request: ScoreQuotationRequest,
    actor: Actor = Depends(get_actor)
):
    return get_scoring_service().score_quotation(
        actor, quotation_id, request.item_scores,
        comment=request.comment, requisition_id=requisition_id,
    )


@app.post("/api/requisitions/{requisition_id}/submit-scores", response_model=ScoringProgress)
def submit_scores(requisition_id: str, actor: Actor = Depends(get_actor)):
    return get_scoring_service().submit_scores(actor, requisition_id)


@app.get("/api/requisitions/{requisition_id}/scoring-progress", response_model=ScoringProgress)
def scoring_progress(requisition_id: str):
    return get_scoring_service().scoring_progress(requisition_id)


@app.post("/api/requisitions/{requisition_id}/extend-scoring-deadline", response_model=Requisition)
def extend_scoring_deadline(
    requisition_id: str,
    request: ExtendScoringDeadlineRequest,
    actor: Actor = Depends(get_actor)
):
    return get_scoring_service().extend_scoring_deadline(actor, requisition_id, request.new_deadline)


# ============================================================
# AWARD ENDPOINTS
# ============================================================

@app.post("/api/requisitions/{requisition_id}/finalize-award", response_model=RequisitionView)
def finalize_award(
    requisition_id: str,
    request: FinalizeAwardRequest,
    actor: Actor = Depends(get_actor)
):
    """Rank quotations and send award offers."""
    selection = AwardSelection(vendor_id=request.vendor_id, item_winners=request.item_winners)
    return get_award_service().finalize_award(
        actor,
        requisition_id,
        selection=selection,
        award_response_deadline=request.award_response_deadline,
    )


@app.post("/api/requisitions/{requisition_id}/respond", response_model=CascadeResponse)
def respond_to_award(requisition_id: str, request: RespondRequest, actor: Actor = Depends(get_actor)):
    """Vendor accepts or declines an award offer."""
    result = get_award_service().respond(
        actor, requisition_id, request.target_id, request.action, reason=request.reason
    )
    return _cascade_response(result)


@app.post("/api/requisitions/{requisition_id}/expire", response_model=ExpiryResponse)
def expire_awards(requisition_id: str, actor: Actor = Depends(get_actor)):
    """Decline every award offer past its response deadline."""
    results = get_award_service().expire_if_past_deadline(requisition_id, actor=actor)
    return ExpiryResponse(
        requisition_id=requisition_id,
        expired=[_cascade_response(r) for r in results],
    )


@app.post("/api/requisitions/{requisition_id}/approve", response_model=Requisition)
def approve_award(requisition_id: str, request: ApprovalRequest, actor: Actor = Depends(get_actor)):
    return get_award_service().record_approval(actor, requisition_id, comment=request.comment)


@app.post("/api/requisitions/{requisition_id}/purchase-orders", response_model=List[PurchaseOrder])
def create_purchase_orders(requisition_id: str, actor: Actor = Depends(get_actor)):
    return get_award_service().create_purchase_orders(actor, requisition_id)


@app.post("/api/purchase-orders/{po_id}/fulfill", response_model=Requisition)
def fulfill_purchase_order(po_id: str, actor: Actor = Depends(get_actor)):
    return get_award_service().mark_po_fulfilled(actor, po_id)


@app.post("/api/requisitions/{requisition_id}/close", response_model=Requisition)
def close_requisition(requisition_id: str, actor: Actor = Depends(get_actor)):
    return get_award_service().close_requisition(actor, requisition_id)


# ============================================================
# CONTRACT ENDPOINTS
# ============================================================

@app.post("/api/requisitions/{requisition_id}/contracts", response_model=Contract)
def create_contract(requisition_id: str, request: CreateContractRequest, actor: Actor = Depends(get_actor)):
    """Draft a contract for a vendor's accepted award."""
    return get_award_service().create_contract(
        actor, requisition_id, request.vendor_id, request.start_date, request.end_date
    )


@app.get("/api/requisitions/{requisition_id}/contracts", response_model=ContractListResponse)
def list_requisition_contracts(requisition_id: str):
    contracts = get_award_service().list_contracts(requisition_id)
    return ContractListResponse(contracts=contracts, total_count=len(contracts))


@app.get("/api/contracts", response_model=ContractListResponse)
def list_contracts():
    """Every contract, newest first."""
    contracts = get_award_service().list_contracts()
    return ContractListResponse(contracts=contracts, total_count=len(contracts))


# ============================================================
# RUN SERVER
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
