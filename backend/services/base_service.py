"""
Base class for award services.

Holds the collaborators every service needs (store, locks, authorizer,
notifier, settings, clock) and the authorize / audit / notify plumbing.
Collaborators default to the process-wide singletons and can be injected.
"""
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from backend.award.cascade import VendorNotice
from backend.award.errors import Unauthorized
from backend.award.models import Actor, Requisition
from backend.config import AwardSettings, get_settings
from backend.persistence.repository import AwardRepository, get_repository
from backend.services.authorization import Authorizer, RoleAuthorizer
from backend.services.locks import RequisitionLocks, get_requisition_locks
from backend.services.notification_service import LoggingNotifier, Notifier, notify_best_effort
from shared.constants import RequisitionAction

logger = logging.getLogger(__name__)


class BaseService:
    """Shared plumbing for RFQ, scoring and award services."""

    def __init__(
        self,
        repository: Optional[AwardRepository] = None,
        locks: Optional[RequisitionLocks] = None,
        authorizer: Optional[Authorizer] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[AwardSettings] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.repository = repository or get_repository()
        self.locks = locks or get_requisition_locks()
        self.authorizer = authorizer or RoleAuthorizer()
        self.notifier = notifier or LoggingNotifier()
        self._settings = settings
        self.clock = clock

    @property
    def settings(self) -> AwardSettings:
        """Injected settings, else the process-wide ones."""
        return self._settings or get_settings()

    def _now(self, now: Optional[datetime]) -> datetime:
        return now or self.clock()

    @staticmethod
    def _as_local(value: Optional[datetime]) -> Optional[datetime]:
        """Stored timestamps are naive local time; convert aware input to match."""
        if value is not None and value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    def _authorize(self, actor: Actor, action: RequisitionAction, requisition: Optional[Requisition]) -> None:
        if not self.authorizer.is_authorized(actor, action, requisition):
            logger.info(
                "[Authorization] %s (%s) denied %s on %s",
                actor.user_id, actor.role.value, action.value,
                requisition.id if requisition else "-",
            )
            raise Unauthorized(
                f"User {actor.user_id} is not allowed to {action.value.replace('_', ' ')}.",
                requisition.id if requisition else None,
            )

    def _notify(self, notices: Iterable[VendorNotice]) -> None:
        for notice in notices:
            notify_best_effort(self.notifier, notice.vendor_id, notice.payload)
