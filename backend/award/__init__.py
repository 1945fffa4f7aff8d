"""Award lifecycle core - pure decision logic over in-memory records."""
from backend.award.cascade import CascadeResult, expire_if_past_deadline, respond
from backend.award.errors import (
    AwardError, ConcurrencyConflict, InvalidTransition, NotFound,
    PreconditionNotMet, Unauthorized, ValidationError
)
from backend.award.finalizer import AwardSelection, FinalizeOutcome, finalize
from backend.award.scoring import aggregate
from backend.award.status_machine import StatusMachine
