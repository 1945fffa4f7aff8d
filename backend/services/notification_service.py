"""
Vendor notification.

Delivery is external; from the award service's point of view notifying is
fire-and-forget and never rolls back a state transition.
"""
import logging
from typing import Any, Dict, List, Protocol, Tuple

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_vendor(self, vendor_id: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records notices in the log."""

    def notify_vendor(self, vendor_id: str, payload: Dict[str, Any]) -> None:
        logger.info("[Notifier] Vendor %s <- %s", vendor_id, payload.get("event", "notice"))


class RecordingNotifier:
    """Keeps every notice in memory (handy for previews and tests)."""

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def notify_vendor(self, vendor_id: str, payload: Dict[str, Any]) -> None:
        self.sent.append((vendor_id, payload))


def notify_best_effort(notifier: Notifier, vendor_id: str, payload: Dict[str, Any]) -> bool:
    """Send a notice, logging (not raising) any delivery failure."""
    try:
        notifier.notify_vendor(vendor_id, payload)
        return True
    except Exception as e:
        logger.warning(f"[Notifier] Failed to notify vendor {vendor_id}: {e}")
        return False
