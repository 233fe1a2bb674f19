"""
Trigger sweeps: business conditions that turn into notifications.

The business records themselves (tasks, todos, contracts, materials) live
outside this service. Callers hand each sweep a list of read-only
snapshots, or plug a TriggerSource into the TimerService, and every
notification goes through PreferenceEngine.send_if_allowed so preference
gating, quiet hours and the dedup guard always apply.

Sweeps:
- Deadline approaching / overdue (per assigned task)
- Daily task summary (at the recipient's configured local time)
- Todo reminders
- Contract quantity exceeded / inventory exceeded (per organization user)
- Low stock (edge-triggered on the material quantity)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from crewnotify.src.config.settings import get_settings
from crewnotify.src.models.notification import NotificationPriority, RelatedEntityKind
from crewnotify.src.services.exceptions import ServiceError
from crewnotify.src.services.notification_service import PreferenceEngine
from crewnotify.src.services.preference_service import DEFAULT_REMINDER_SETTINGS
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("scheduler")


CLOSED_TASK_STATUSES = ("completed", "cancelled")


# ============================================================================
# Snapshots
# ============================================================================

@dataclass
class TaskSnapshot:
    task_id: str
    title: str
    assignee_id: Optional[int]
    due_date: Optional[datetime] = None
    priority: str = "medium"
    status: str = "pending"


@dataclass
class TodoSnapshot:
    todo_id: str
    title: str
    recipient_id: Optional[int]
    reminder_date: datetime
    priority: str = "medium"


@dataclass
class ContractUsage:
    """Consumption against one active contract, with the users to alert."""
    contract_id: str
    material_name: str
    contract_quantity: float
    total_consumption: float
    recipient_ids: List[int] = field(default_factory=list)
    unit: str = "pcs"


@dataclass
class InventoryUsage:
    """Consumption against total received quantity for one material."""
    material_name: str
    received: float
    total_consumption: float
    recipient_ids: List[int] = field(default_factory=list)


@dataclass
class MaterialLevel:
    """
    Current stock level of a material.

    previous_quantity is the level before the change being reported, when
    the caller knows it; otherwise the last observed level is used.
    """
    material_id: str
    name: str
    quantity: float
    recipient_ids: List[int] = field(default_factory=list)
    unit: str = ""
    threshold: Optional[float] = None
    previous_quantity: Optional[float] = None
    sender_id: Optional[int] = None


@dataclass
class SweepResult:
    checked: int = 0
    notified: int = 0
    failed: int = 0
    processed_ids: List[str] = field(default_factory=list)


class TriggerSource(Protocol):
    """Supplies business snapshots to the periodic sweeps."""

    def tasks(self) -> Sequence[TaskSnapshot]: ...

    def todos(self, now: datetime) -> Sequence[TodoSnapshot]: ...

    def contract_usage(self) -> Sequence[ContractUsage]: ...

    def inventory_usage(self) -> Sequence[InventoryUsage]: ...

    def material_levels(self) -> Sequence[MaterialLevel]: ...

    def mark_todos_notified(self, todo_ids: Sequence[str]) -> None: ...


# ============================================================================
# Formatting helpers
# ============================================================================

def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_time_remaining(hours: float) -> str:
    """'45 minutes', '3 hours', '2 days'."""
    if hours < 1:
        return _plural(int(hours * 60), "minute")
    if hours < 24:
        return _plural(int(hours), "hour")
    return _plural(int(hours // 24), "day")


def format_time_overdue(hours: float) -> str:
    if hours < 24:
        return _plural(int(hours), "hour")
    return _plural(int(hours // 24), "day")


def format_quantity(value: float) -> str:
    return f"{value:g}"


def deadline_priority(task_priority: str, hours_remaining: float) -> str:
    if task_priority == NotificationPriority.URGENT.value:
        return NotificationPriority.URGENT.value
    if task_priority == NotificationPriority.HIGH.value or hours_remaining < 1:
        return NotificationPriority.HIGH.value
    return NotificationPriority.MEDIUM.value


# ============================================================================
# Trigger service
# ============================================================================

class TriggerService:
    """
    Runs the business trigger sweeps through a PreferenceEngine.

    Args:
        engine: Preference engine used for every send
        low_stock_threshold: Default threshold for materials without their own
    """

    def __init__(self, engine: PreferenceEngine, low_stock_threshold: Optional[float] = None):
        self.engine = engine
        if low_stock_threshold is None:
            low_stock_threshold = get_settings().low_stock_threshold
        self.low_stock_threshold = low_stock_threshold

    def _send(self, recipient_id: int, notification_data: Dict[str, Any], now: datetime,
              result: SweepResult, enforce_daily_cap: bool = True) -> bool:
        try:
            notification = self.engine.send_if_allowed(
                recipient_id, notification_data, now=now, enforce_daily_cap=enforce_daily_cap
            )
        except ServiceError as e:
            result.failed += 1
            logger.warning(
                f"Trigger send failed: {e}",
                extra={"recipient_id": recipient_id, "type": notification_data.get("type")},
            )
            return False
        if notification is not None:
            result.notified += 1
            return True
        return False

    def _deadline_settings(self, recipient_id: int) -> Dict[str, Any]:
        prefs = self.engine.preferences.get_or_create(recipient_id)
        settings = self.engine.preferences.to_dict(prefs)["reminder_settings"]
        return settings.get("deadline_reminders") or DEFAULT_REMINDER_SETTINGS["deadline_reminders"]

    # ------------------------------------------------------------------------
    # Deadlines
    # ------------------------------------------------------------------------

    def check_approaching_deadlines(self, tasks: Sequence[TaskSnapshot],
                                    now: Optional[datetime] = None) -> SweepResult:
        """
        Notify assignees of open tasks due within their reminder window.

        A task qualifies when 0 < hours until due <= hours_before. With
        repeat disabled (the default) each task notifies at most once per
        day; with repeat enabled every sweep inside the window notifies.
        """
        now = now or datetime.utcnow()
        result = SweepResult()

        for task in tasks:
            if task.due_date is None or task.status in CLOSED_TASK_STATUSES:
                continue
            result.checked += 1
            if task.assignee_id is None:
                continue

            try:
                reminders = self._deadline_settings(task.assignee_id)
            except ServiceError as e:
                result.failed += 1
                logger.warning(f"Skipping deadline check: {e}", extra={"task_id": task.task_id})
                continue
            if not reminders.get("enabled"):
                continue

            hours = (task.due_date - now).total_seconds() / 3600
            if not 0 < hours <= reminders.get("hours_before", 24):
                continue

            self._send(
                task.assignee_id,
                {
                    "title": "Deadline Approaching",
                    "message": f'Task "{task.title}" is due in {format_time_remaining(hours)}.',
                    "type": "deadline_approaching",
                    "priority": deadline_priority(task.priority, hours),
                    "related_entity": {"kind": RelatedEntityKind.TASK.value, "id": task.task_id},
                    "data": {
                        "taskId": task.task_id,
                        "taskTitle": task.title,
                        "dueDate": task.due_date.isoformat(),
                        "hoursRemaining": round(hours, 2),
                    },
                },
                now,
                result,
                enforce_daily_cap=not reminders.get("repeat", False),
            )

        logger.info(
            "Deadline approaching check completed",
            extra={"checked": result.checked, "notified": result.notified},
        )
        return result

    def check_overdue_deadlines(self, tasks: Sequence[TaskSnapshot],
                                now: Optional[datetime] = None) -> SweepResult:
        """Notify assignees of open tasks past due, at most once per task per day."""
        now = now or datetime.utcnow()
        result = SweepResult()

        for task in tasks:
            if task.due_date is None or task.due_date >= now or task.status in CLOSED_TASK_STATUSES:
                continue
            result.checked += 1
            if task.assignee_id is None:
                continue

            hours = (now - task.due_date).total_seconds() / 3600
            priority = (
                NotificationPriority.URGENT.value
                if task.priority == NotificationPriority.URGENT.value
                else NotificationPriority.HIGH.value
            )
            self._send(
                task.assignee_id,
                {
                    "title": "Deadline Overdue",
                    "message": f'Task "{task.title}" is overdue by {format_time_overdue(hours)}.',
                    "type": "deadline_overdue",
                    "priority": priority,
                    "related_entity": {"kind": RelatedEntityKind.TASK.value, "id": task.task_id},
                    "data": {
                        "taskId": task.task_id,
                        "taskTitle": task.title,
                        "dueDate": task.due_date.isoformat(),
                        "hoursOverdue": round(hours, 2),
                    },
                },
                now,
                result,
            )

        logger.info(
            "Deadline overdue check completed",
            extra={"checked": result.checked, "notified": result.notified},
        )
        return result

    # ------------------------------------------------------------------------
    # Daily summary
    # ------------------------------------------------------------------------

    def send_daily_summaries(self, tasks: Sequence[TaskSnapshot],
                             now: Optional[datetime] = None) -> SweepResult:
        """
        Send the daily task summary to recipients whose configured summary
        time matches the current minute in their timezone.
        """
        now = now or datetime.utcnow()
        result = SweepResult()
        preferences = self.engine.preferences

        open_tasks: Dict[int, List[TaskSnapshot]] = {}
        for task in tasks:
            if task.assignee_id is not None and task.status not in CLOSED_TASK_STATUSES:
                open_tasks.setdefault(task.assignee_id, []).append(task)

        for recipient in self.engine.identity_resolver.list_active():
            result.checked += 1
            prefs = preferences.get_or_create(recipient.id)
            summary_settings = preferences.to_dict(prefs)["reminder_settings"]["daily_summary"]
            if not summary_settings.get("enabled"):
                continue

            local_now = preferences.local_datetime(prefs, now)
            if local_now.strftime("%H:%M") != summary_settings.get("time", "18:00"):
                continue

            assigned = open_tasks.get(recipient.id, [])
            pending = sum(1 for t in assigned if t.status == "pending")
            in_progress = sum(1 for t in assigned if t.status == "in_progress")
            overdue = sum(1 for t in assigned if t.due_date is not None and t.due_date < now)

            if pending == 0 and in_progress == 0 and overdue == 0:
                message = "Daily Task Summary: No active tasks assigned."
            else:
                lines = [
                    "Daily Task Summary:",
                    f"• {_plural(pending, 'pending task')}",
                    f"• {_plural(in_progress, 'in progress task')}",
                ]
                if overdue:
                    lines.append(f"• {_plural(overdue, 'overdue task')}")
                message = "\n".join(lines)

            self._send(
                recipient.id,
                {
                    "title": "Daily Task Summary",
                    "message": message,
                    "type": "reminder",
                    "priority": (
                        NotificationPriority.HIGH.value if overdue else NotificationPriority.MEDIUM.value
                    ),
                    "data": {
                        "summaryType": "daily",
                        "pendingTasks": pending,
                        "inProgressTasks": in_progress,
                        "overdueTasks": overdue,
                        "date": local_now.date().isoformat(),
                    },
                },
                now,
                result,
            )

        if result.notified:
            logger.info(
                "Daily summaries sent",
                extra={"checked": result.checked, "notified": result.notified},
            )
        return result

    # ------------------------------------------------------------------------
    # Todo reminders
    # ------------------------------------------------------------------------

    def check_todo_reminders(self, todos: Sequence[TodoSnapshot],
                             now: Optional[datetime] = None) -> SweepResult:
        """
        Send reminders for due todos.

        Every due todo is reported in processed_ids whether or not a
        notification was created, so callers can mark it notified and
        stop re-checking it.
        """
        now = now or datetime.utcnow()
        result = SweepResult()

        for todo in todos:
            if todo.reminder_date > now:
                continue
            result.checked += 1
            if todo.recipient_id is None:
                continue

            self._send(
                todo.recipient_id,
                {
                    "title": "Todo Reminder",
                    "message": f"Reminder: {todo.title}",
                    "type": "todo_reminder",
                    "priority": todo.priority or NotificationPriority.MEDIUM.value,
                    "related_entity": {"kind": RelatedEntityKind.TODO.value, "id": todo.todo_id},
                    "data": {
                        "todoId": todo.todo_id,
                        "todoTitle": todo.title,
                        "reminderDate": todo.reminder_date.isoformat(),
                    },
                },
                now,
                result,
            )
            result.processed_ids.append(todo.todo_id)

        return result

    # ------------------------------------------------------------------------
    # Contract / inventory exceeded
    # ------------------------------------------------------------------------

    def check_exceeded_contracts(self, usages: Sequence[ContractUsage],
                                 now: Optional[datetime] = None) -> SweepResult:
        """Alert users when consumption passes the contract quantity (max 2/day per contract)."""
        now = now or datetime.utcnow()
        result = SweepResult()

        for usage in usages:
            result.checked += 1
            if usage.total_consumption <= usage.contract_quantity:
                continue

            excess = usage.total_consumption - usage.contract_quantity
            unit = usage.unit or "pcs"
            message = (
                f"{usage.material_name} consumption ({format_quantity(usage.total_consumption)} {unit}) "
                f"has exceeded the contract quantity ({format_quantity(usage.contract_quantity)} {unit}) "
                f"by {format_quantity(excess)} {unit}."
            )
            for recipient_id in dict.fromkeys(usage.recipient_ids):
                self._send(
                    recipient_id,
                    {
                        "title": "Contract Quantity Exceeded",
                        "message": message,
                        "type": "contract_exceeded",
                        "priority": NotificationPriority.HIGH.value,
                        "related_entity": {"kind": RelatedEntityKind.CONTRACT.value, "id": usage.contract_id},
                        "data": {
                            "contractId": usage.contract_id,
                            "materialName": usage.material_name,
                            "contractQuantity": usage.contract_quantity,
                            "totalConsumption": usage.total_consumption,
                            "excessAmount": excess,
                            "unit": unit,
                        },
                    },
                    now,
                    result,
                )

        logger.info(
            "Contract exceed check completed",
            extra={"checked": result.checked, "notified": result.notified},
        )
        return result

    def check_exceeded_inventory(self, usages: Sequence[InventoryUsage],
                                 now: Optional[datetime] = None) -> SweepResult:
        """Alert users when consumption passes the received quantity (max 2/day per material)."""
        now = now or datetime.utcnow()
        result = SweepResult()

        for usage in usages:
            result.checked += 1
            if usage.total_consumption <= usage.received:
                continue

            excess = usage.total_consumption - usage.received
            message = (
                f"{usage.material_name} consumption ({format_quantity(usage.total_consumption)} pcs) "
                f"has exceeded the received quantity ({format_quantity(usage.received)} pcs) "
                f"by {format_quantity(excess)} pcs."
            )
            for recipient_id in dict.fromkeys(usage.recipient_ids):
                self._send(
                    recipient_id,
                    {
                        "title": "Inventory Exceeded",
                        "message": message,
                        "type": "inventory_exceeded",
                        "priority": NotificationPriority.HIGH.value,
                        "data": {
                            "materialName": usage.material_name,
                            "received": usage.received,
                            "totalConsumption": usage.total_consumption,
                            "excessAmount": excess,
                            "stock": usage.received - usage.total_consumption,
                        },
                    },
                    now,
                    result,
                )

        logger.info(
            "Inventory exceed check completed",
            extra={"checked": result.checked, "notified": result.notified},
        )
        return result

    # ------------------------------------------------------------------------
    # Low stock
    # ------------------------------------------------------------------------

    def check_low_stock(self, levels: Sequence[MaterialLevel],
                        now: Optional[datetime] = None) -> SweepResult:
        """
        Alert on materials whose quantity just crossed down to the threshold.

        Edge-triggered: a material that stays low does not notify again
        until its quantity rises above the threshold and drops back.
        """
        now = now or datetime.utcnow()
        result = SweepResult()

        for level in levels:
            result.checked += 1
            threshold = level.threshold if level.threshold is not None else self.low_stock_threshold
            crossed = self.engine.dedup_guard.observe_level(
                f"low_stock:{level.material_id}",
                level.quantity,
                threshold,
                previous=level.previous_quantity,
            )
            if not crossed:
                continue

            amount = " ".join(p for p in (format_quantity(level.quantity), level.unit) if p)
            for recipient_id in dict.fromkeys(level.recipient_ids):
                self._send(
                    recipient_id,
                    {
                        "title": f"Low stock: {level.name}",
                        "message": f"Only {amount} left. Please restock.",
                        "type": "low_stock",
                        "priority": NotificationPriority.HIGH.value,
                        "sender_id": level.sender_id,
                        "related_entity": {"kind": RelatedEntityKind.MATERIAL.value, "id": level.material_id},
                        "data": {
                            "materialId": level.material_id,
                            "quantity": level.quantity,
                            "threshold": threshold,
                        },
                    },
                    now,
                    result,
                )

        return result
