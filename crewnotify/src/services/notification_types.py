"""
Registered notification types.

Every notification type must be registered before it can be sent. A type
carries its default preference toggle and, for recurring conditions, a
daily cap plus the data key used to correlate repeats of one condition.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from crewnotify.src.services.exceptions import UnknownNotificationTypeError
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("services")


@dataclass(frozen=True)
class NotificationType:
    """
    A registered notification type.

    Attributes:
        key: Type key stored on notifications and preference toggles
        default_enabled: Toggle value for newly created preferences
        daily_cap: Max notifications per recipient/correlation per UTC day
            (None = uncapped)
        correlation_key: data[...] field identifying one recurring condition;
            None correlates all notifications of the type for a recipient
    """

    key: str
    default_enabled: bool = True
    daily_cap: Optional[int] = None
    correlation_key: Optional[str] = None
    description: str = ""


BUILTIN_TYPES: List[NotificationType] = [
    NotificationType("task_assigned", description="A task was assigned to the recipient"),
    NotificationType("task_completed", description="A task the recipient follows was completed"),
    NotificationType(
        "deadline_approaching",
        daily_cap=1,
        correlation_key="taskId",
        description="A task deadline is within the reminder window",
    ),
    NotificationType(
        "deadline_overdue",
        daily_cap=1,
        correlation_key="taskId",
        description="A task deadline has passed",
    ),
    NotificationType("time_approved", description="A time entry was approved"),
    NotificationType("time_rejected", description="A time entry was rejected"),
    NotificationType("system_announcement", description="Broadcast announcement"),
    NotificationType(
        "reminder",
        daily_cap=1,
        correlation_key="summaryType",
        description="Generic reminder, including the daily summary",
    ),
    NotificationType("overtime_alert", description="Worked hours exceeded the schedule"),
    NotificationType("schedule_change", description="The recipient's schedule changed"),
    NotificationType(
        "low_stock",
        correlation_key="materialId",
        description="Material stock fell to or below the threshold",
    ),
    NotificationType("daily_report_missing", description="No daily report was submitted"),
    NotificationType(
        "todo_reminder",
        correlation_key="todoId",
        description="A personal to-do reached its reminder time",
    ),
    NotificationType(
        "contract_exceeded",
        daily_cap=2,
        correlation_key="contractId",
        description="Contract hours or value were exceeded",
    ),
    NotificationType(
        "inventory_exceeded",
        daily_cap=2,
        correlation_key="materialName",
        description="Material usage exceeded the allocated inventory",
    ),
]


class NotificationTypeRegistry:
    """
    Table of notification types known to the engine.

    Populated with the built-in types at startup; callers may register
    additional types before sending them.
    """

    def __init__(self, types: Optional[Iterable[NotificationType]] = None):
        self._types: Dict[str, NotificationType] = {}
        for notification_type in types or []:
            self.register(notification_type)

    def register(self, notification_type: NotificationType) -> NotificationType:
        """Register (or replace) a type definition."""
        if notification_type.key in self._types:
            logger.info(
                "Replacing registered notification type",
                extra={"type": notification_type.key},
            )
        self._types[notification_type.key] = notification_type
        return notification_type

    def is_registered(self, key: str) -> bool:
        return key in self._types

    def get(self, key: str) -> NotificationType:
        """
        Look up a registered type.

        Raises:
            UnknownNotificationTypeError: If the key was never registered
        """
        try:
            return self._types[key]
        except KeyError:
            raise UnknownNotificationTypeError(key) from None

    def keys(self) -> List[str]:
        return list(self._types.keys())

    def default_toggles(self) -> Dict[str, bool]:
        """{type_key: default_enabled} for newly created preferences."""
        return {t.key: t.default_enabled for t in self._types.values()}

    def __contains__(self, key: str) -> bool:
        return key in self._types

    def __len__(self) -> int:
        return len(self._types)


_registry: Optional[NotificationTypeRegistry] = None


def get_type_registry() -> NotificationTypeRegistry:
    """Process-wide registry, created with the built-in types on first use."""
    global _registry
    if _registry is None:
        _registry = NotificationTypeRegistry(BUILTIN_TYPES)
    return _registry
