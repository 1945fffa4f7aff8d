"""
Error taxonomy for the award core.

Every error is scoped to a single requisition request. The API layer maps
``status_code`` onto the HTTP response.
"""
from typing import Optional


class AwardError(Exception):
    """Base class for all award lifecycle errors."""

    status_code = 400

    def __init__(self, message: str, requisition_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.requisition_id = requisition_id


class ValidationError(AwardError):
    """Malformed input, rejected before any mutation."""

    status_code = 400


class Unauthorized(AwardError):
    status_code = 403


class NotFound(AwardError):
    status_code = 404


class InvalidTransition(AwardError):
    """Action attempted from a state that does not permit it."""

    status_code = 409


class ConcurrencyConflict(AwardError):
    """Stale write detected on a requisition's award state."""

    status_code = 409


class PreconditionNotMet(AwardError):
    """Action is valid for the state but its gate is not satisfied yet."""

    status_code = 412
