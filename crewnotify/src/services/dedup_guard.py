"""
Dedup guard: suppresses notification storms for recurring conditions.

Two mechanisms:
- Daily cap: at most N notifications per (recipient, type, correlation
  value) per UTC calendar day, N taken from the type table.
- Edge trigger: a monitored level notifies only when it moves from above
  a threshold to at-or-below it; staying below never re-notifies.

The count-then-create sequence is not transactional. Two triggers racing
for the same recipient/type/key within one tick may both pass.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from crewnotify.src.models.threshold_state import ThresholdState
from crewnotify.src.services.notification_store import NotificationStore
from crewnotify.src.services.notification_types import NotificationTypeRegistry, get_type_registry
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("services")


def utc_day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[00:00, next 00:00) of now's UTC calendar day, as naive UTC."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def crossed_below(previous: Optional[float], current: float, threshold: float) -> bool:
    """
    True when a level moves from above the threshold to at-or-below it.

    An unknown previous level counts as above the threshold.
    """
    if current > threshold:
        return False
    return previous is None or previous > threshold


class DedupGuard:
    """Daily-cap and edge-trigger suppression over the notification store."""

    def __init__(
        self,
        db: Session,
        store: Optional[NotificationStore] = None,
        type_registry: Optional[NotificationTypeRegistry] = None,
    ):
        self.db = db
        self.type_registry = type_registry or get_type_registry()
        self.store = store or NotificationStore(db, type_registry=self.type_registry)

    def correlation_value(self, notification_type: str, data: Optional[Dict[str, Any]]) -> Optional[str]:
        """data[correlation_key] of the type as a string, if present."""
        key = self.type_registry.get(notification_type).correlation_key
        if not key or not data or data.get(key) is None:
            return None
        return str(data[key])

    def allow(
        self,
        recipient_id: int,
        notification_type: str,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
        daily_cap: Optional[int] = None,
    ) -> bool:
        """
        Whether another notification may be created today.

        Args:
            recipient_id: Recipient id
            notification_type: Registered type key
            data: Notification data holding the correlation value
            now: Current time (naive UTC)
            daily_cap: Override for the type's configured cap

        Returns:
            False when the UTC-day count for (recipient, type, correlation
            value) already reached the cap. Types without a cap, and
            correlated types sent without a correlation value, are never
            blocked.
        """
        registered = self.type_registry.get(notification_type)
        cap = daily_cap if daily_cap is not None else registered.daily_cap
        if cap is None:
            return True

        correlation_key = registered.correlation_key
        correlation_value = None
        if correlation_key:
            correlation_value = self.correlation_value(notification_type, data)
            if correlation_value is None:
                return True

        start, end = utc_day_bounds(now or datetime.utcnow())
        count = self.store.count_created_between(
            recipient_id=recipient_id,
            notification_type=notification_type,
            start=start,
            end=end,
            correlation_key=correlation_key,
            correlation_value=correlation_value,
        )

        if count >= cap:
            logger.info(
                "Dedup guard suppressed notification",
                extra={
                    "recipient_id": recipient_id,
                    "type": notification_type,
                    "correlation": correlation_value,
                    "count_today": count,
                    "daily_cap": cap,
                },
            )
            return False
        return True

    def observe_level(
        self,
        watch_key: str,
        value: float,
        threshold: float,
        previous: Optional[float] = None,
    ) -> bool:
        """
        Record a level observation and report a downward threshold crossing.

        Args:
            watch_key: Identifier of the monitored level (e.g. "low_stock:42")
            value: Current level
            threshold: Level at or below which the condition holds
            previous: Caller-known previous level; defaults to the last
                stored observation

        Returns:
            True exactly when this observation crosses into the condition
        """
        state = (
            self.db.query(ThresholdState)
            .filter(ThresholdState.watch_key == watch_key)
            .first()
        )
        if previous is None and state is not None:
            previous = state.last_value

        fired = crossed_below(previous, value, threshold)

        if state is None:
            state = ThresholdState(watch_key=watch_key, last_value=value)
            self.db.add(state)
        state.last_value = value
        state.is_below = value <= threshold
        state.updated_at = datetime.utcnow()
        self.db.commit()

        if fired:
            logger.info(
                "Threshold crossed",
                extra={"watch_key": watch_key, "previous": previous, "value": value, "threshold": threshold},
            )
        return fired
