"""
Scheduled dispatcher: the deferred delivery branch.

Each sweep selects a bounded batch of pending/sent records whose
quiet-hours deferral (scheduled_for) or retry backoff (next_attempt_at)
has come due, and re-attempts them through the same
NotificationStore.deliver call the immediate path uses.

The dispatcher holds no clock of its own; TimerService (or the
/dispatch endpoint) invokes process_scheduled_notifications.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from crewnotify.src.config.settings import get_settings
from crewnotify.src.models.notification import NotificationStatus
from crewnotify.src.services.notification_store import NotificationStore
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("scheduler")


@dataclass
class DispatchSummary:
    """
    Result of one dispatcher sweep.

    Attributes:
        selected: Due records picked up by the sweep
        delivered: Records that a channel acknowledged
        pending: Records left for a later sweep (backoff scheduled)
        abandoned: Records no longer retried (max attempts, invalid or no targets)
    """
    selected: int = 0
    delivered: int = 0
    pending: int = 0
    abandoned: int = 0

    def to_dict(self):
        return {
            "selected": self.selected,
            "delivered": self.delivered,
            "pending": self.pending,
            "abandoned": self.abandoned,
        }


class ScheduledDispatcher:
    """
    Re-attempts due notifications in bounded batches.

    Args:
        store: Notification store with a delivery router attached
        batch_size: Max records per sweep (default from settings)
    """

    def __init__(self, store: NotificationStore, batch_size: Optional[int] = None):
        self.store = store
        self.batch_size = batch_size or get_settings().dispatch_batch_size

    def process_scheduled_notifications(self, now: Optional[datetime] = None) -> DispatchSummary:
        """
        Run one sweep.

        Args:
            now: Sweep time (naive UTC); defaults to utcnow

        Returns:
            DispatchSummary with per-outcome counts

        Raises:
            PersistenceError: If an outcome cannot be recorded; records
                processed before the failure keep their recorded outcome
        """
        now = now or datetime.utcnow()
        due = self.store.select_due(now=now, limit=self.batch_size)
        summary = DispatchSummary(selected=len(due))

        if not due:
            return summary

        for notification in due:
            self.store.deliver(notification, now=now)

            if notification.status == NotificationStatus.DELIVERED.value:
                summary.delivered += 1
            elif notification.next_attempt_at is not None:
                summary.pending += 1
            else:
                summary.abandoned += 1

        logger.info(
            "Scheduled dispatch completed",
            extra={"batch_size": self.batch_size, **summary.to_dict()},
        )
        return summary
