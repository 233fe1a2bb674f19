"""
Preference service for per-recipient notification settings.

Provides:
- Lazy creation of preferences with engine defaults
- Partial (deep-merge) preference updates with validation
- Channel target registration (push token, web push subscription)
- Type gating and quiet-hours evaluation in the recipient's timezone
"""

import copy
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from crewnotify.src.models.notification_preferences import NotificationPreferences
from crewnotify.src.services.channels import is_push_token, is_web_push_subscription
from crewnotify.src.services.exceptions import ValidationError
from crewnotify.src.services.identity import DatabaseIdentityResolver, IdentityResolver
from crewnotify.src.services.notification_types import NotificationTypeRegistry, get_type_registry
from crewnotify.src.utils.logging_config import get_logger


logger = get_logger("services")


DEFAULT_QUIET_HOURS = {
    "enabled": False,
    "start_time": "22:00",
    "end_time": "08:00",
    "timezone": "UTC",
}

DEFAULT_REMINDER_SETTINGS = {
    "deadline_reminders": {"enabled": True, "hours_before": 24, "repeat": False},
    "task_reminders": {"enabled": True, "inactive_hours": 2},
    "daily_summary": {"enabled": False, "time": "18:00"},
}

# Integer settings and their allowed ranges
INTEGER_RANGES = {
    "hours_before": (1, 168),
    "inactive_hours": (1, 72),
}

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str, field: str = "time") -> time:
    """
    Parse a wall-clock "HH:MM" string.

    Raises:
        ValidationError: If the value is not a valid 24h HH:MM time
    """
    match = HHMM_PATTERN.match(value or "") if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM", field=field)
    return time(int(match.group(1)), int(match.group(2)))


def resolve_timezone(name: str, field: str = "timezone") -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ValidationError: If the timezone is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ValidationError(f"Invalid timezone: {name}", field=field) from None


def _as_utc(now: Optional[datetime]) -> datetime:
    """Treat naive datetimes as UTC (the store keeps naive UTC)."""
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class PreferenceService:
    """
    Service for reading, updating and evaluating recipient preferences.

    Exactly one NotificationPreferences row exists per recipient; it is
    created with defaults the first time it is read or written.
    """

    def __init__(
        self,
        db: Session,
        type_registry: Optional[NotificationTypeRegistry] = None,
        identity_resolver: Optional[IdentityResolver] = None,
    ):
        self.db = db
        self.type_registry = type_registry or get_type_registry()
        self.identity_resolver = identity_resolver or DatabaseIdentityResolver(db)

    # ========================================================================
    # Defaults and Loading
    # ========================================================================

    def get_default_preferences(self) -> Dict[str, Any]:
        """Engine defaults: push on, every registered type on, quiet hours off."""
        return {
            "push_enabled": True,
            "email_enabled": False,
            "notification_types": self.type_registry.default_toggles(),
            "quiet_hours": copy.deepcopy(DEFAULT_QUIET_HOURS),
            "reminder_settings": copy.deepcopy(DEFAULT_REMINDER_SETTINGS),
        }

    def get(self, recipient_id: int) -> Optional[NotificationPreferences]:
        return (
            self.db.query(NotificationPreferences)
            .filter(NotificationPreferences.recipient_id == recipient_id)
            .first()
        )

    def get_or_create(self, recipient_id: int) -> NotificationPreferences:
        """
        Return the recipient's preferences, creating defaults on first access.

        Raises:
            RecipientNotFoundError: If the recipient does not exist
        """
        prefs = self.get(recipient_id)
        if prefs is not None:
            return prefs

        self.identity_resolver.resolve(recipient_id)

        defaults = self.get_default_preferences()
        prefs = NotificationPreferences(recipient_id=recipient_id, **defaults)
        self.db.add(prefs)
        self.db.commit()
        self.db.refresh(prefs)
        logger.info("Created default notification preferences", extra={"recipient_id": recipient_id})
        return prefs

    def to_dict(self, prefs: NotificationPreferences) -> Dict[str, Any]:
        """
        Full preference view with defaults filling any missing keys.

        Types registered after the row was created show their default toggle.
        """
        defaults = self.get_default_preferences()
        return {
            "push_enabled": prefs.push_enabled,
            "email_enabled": prefs.email_enabled,
            "notification_types": {**defaults["notification_types"], **(prefs.notification_types or {})},
            "quiet_hours": {**defaults["quiet_hours"], **(prefs.quiet_hours or {})},
            "reminder_settings": {
                section: {**values, **((prefs.reminder_settings or {}).get(section) or {})}
                for section, values in defaults["reminder_settings"].items()
            },
            "push_token": prefs.push_token,
            "web_push_subscription": prefs.web_push_subscription,
            "last_updated": prefs.last_updated,
        }

    # ========================================================================
    # Updates
    # ========================================================================

    def update(self, recipient_id: int, updates: Dict[str, Any]) -> NotificationPreferences:
        """
        Partially update preferences.

        notification_types, quiet_hours and reminder_settings are deep
        merged; push_enabled and email_enabled are replaced. Unknown keys
        are ignored.

        Raises:
            ValidationError: On an invalid time, timezone, or value type
        """
        prefs = self.get_or_create(recipient_id)
        current = self.to_dict(prefs)

        for key in ("push_enabled", "email_enabled"):
            if updates.get(key) is not None:
                if not isinstance(updates[key], bool):
                    raise ValidationError(f"{key} must be a boolean", field=key)
                setattr(prefs, key, updates[key])

        type_updates = updates.get("notification_types")
        if type_updates:
            toggles = dict(current["notification_types"])
            for type_key, enabled in type_updates.items():
                if type_key not in self.type_registry:
                    continue
                if not isinstance(enabled, bool):
                    raise ValidationError(
                        f"notification_types.{type_key} must be a boolean",
                        field="notification_types",
                    )
                toggles[type_key] = enabled
            prefs.notification_types = toggles

        quiet_updates = updates.get("quiet_hours")
        if quiet_updates:
            prefs.quiet_hours = self._merge_section(
                current["quiet_hours"], quiet_updates, "quiet_hours"
            )

        reminder_updates = updates.get("reminder_settings")
        if reminder_updates:
            merged = copy.deepcopy(current["reminder_settings"])
            for section, values in reminder_updates.items():
                if section not in merged or not values:
                    continue
                merged[section] = self._merge_section(
                    merged[section], values, f"reminder_settings.{section}"
                )
            prefs.reminder_settings = merged

        prefs.last_updated = datetime.utcnow()
        self.db.commit()
        self.db.refresh(prefs)

        logger.info(
            "Updated notification preferences",
            extra={"recipient_id": recipient_id, "keys": sorted(k for k in updates if updates[k] is not None)},
        )
        return prefs

    def _merge_section(self, current: Dict[str, Any], updates: Dict[str, Any], path: str) -> Dict[str, Any]:
        merged = dict(current)
        for key, value in updates.items():
            if key not in current or value is None:
                continue
            field = f"{path}.{key}"
            if isinstance(current[key], bool):
                if not isinstance(value, bool):
                    raise ValidationError(f"{field} must be a boolean", field=field)
            elif key in INTEGER_RANGES:
                low, high = INTEGER_RANGES[key]
                if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
                    raise ValidationError(f"{field} must be an integer between {low} and {high}", field=field)
            elif key in ("start_time", "end_time", "time"):
                parse_hhmm(value, field=field)
            elif key == "timezone":
                resolve_timezone(value, field=field)
            merged[key] = value
        return merged

    def update_push_token(self, recipient_id: int, push_token: Optional[str]) -> NotificationPreferences:
        """
        Set (or clear, with None) the recipient's mobile push token.

        Only notifications created afterwards carry the new token.

        Raises:
            ValidationError: If the token is not a valid push token
        """
        if push_token and not is_push_token(push_token):
            raise ValidationError("Invalid push token format", field="push_token")

        prefs = self.get_or_create(recipient_id)
        prefs.push_token = push_token or None
        prefs.last_updated = datetime.utcnow()
        self.db.commit()
        self.db.refresh(prefs)
        logger.info(
            "Updated push token",
            extra={"recipient_id": recipient_id, "cleared": not push_token},
        )
        return prefs

    def update_web_push_subscription(
        self,
        recipient_id: int,
        subscription: Optional[Dict[str, Any]],
    ) -> NotificationPreferences:
        """
        Set (or clear, with None) the recipient's web push subscription.

        Raises:
            ValidationError: If the subscription lacks endpoint/keys or the
                endpoint is not HTTPS
        """
        if subscription:
            if not is_web_push_subscription(subscription):
                raise ValidationError(
                    "Subscription requires endpoint and keys.p256dh/keys.auth",
                    field="web_push_subscription",
                )
            if not subscription["endpoint"].startswith("https://"):
                raise ValidationError(
                    "Push subscription endpoint must use HTTPS",
                    field="web_push_subscription",
                )
            subscription = {
                "endpoint": subscription["endpoint"],
                "keys": {
                    "p256dh": subscription["keys"]["p256dh"],
                    "auth": subscription["keys"]["auth"],
                },
            }

        prefs = self.get_or_create(recipient_id)
        prefs.web_push_subscription = subscription or None
        prefs.last_updated = datetime.utcnow()
        self.db.commit()
        self.db.refresh(prefs)
        logger.info(
            "Updated web push subscription",
            extra={"recipient_id": recipient_id, "cleared": not subscription},
        )
        return prefs

    def clear_channel_targets(self, recipient_id: int) -> NotificationPreferences:
        """Remove both the push token and the web push subscription."""
        prefs = self.get_or_create(recipient_id)
        prefs.push_token = None
        prefs.web_push_subscription = None
        prefs.last_updated = datetime.utcnow()
        self.db.commit()
        self.db.refresh(prefs)
        logger.info("Cleared channel targets", extra={"recipient_id": recipient_id})
        return prefs

    # ========================================================================
    # Evaluation
    # ========================================================================

    def is_notification_enabled(self, prefs: NotificationPreferences, notification_type: str) -> bool:
        """
        True when push is enabled and the type's toggle is explicitly on.

        Unregistered types are never enabled.
        """
        if not prefs.push_enabled:
            logger.debug(
                "Preference check: push disabled",
                extra={"recipient_id": prefs.recipient_id, "type": notification_type},
            )
            return False

        if notification_type not in self.type_registry:
            logger.debug(
                "Preference check: unregistered type",
                extra={"recipient_id": prefs.recipient_id, "type": notification_type},
            )
            return False

        toggles = self.to_dict(prefs)["notification_types"]
        enabled = toggles.get(notification_type) is True
        if not enabled:
            logger.debug(
                "Preference check: type disabled",
                extra={"recipient_id": prefs.recipient_id, "type": notification_type},
            )
        return enabled

    def _quiet_hours(self, prefs: NotificationPreferences) -> Dict[str, Any]:
        return {**DEFAULT_QUIET_HOURS, **(prefs.quiet_hours or {})}

    def is_in_quiet_hours(self, prefs: NotificationPreferences, now: Optional[datetime] = None) -> bool:
        """
        Whether ``now`` falls inside the recipient's quiet-hours window.

        Times are compared as minute-of-day in the recipient's timezone.
        A window with start < end is same-day (inclusive on both ends);
        otherwise it wraps midnight. start == end covers the whole day.
        """
        quiet = self._quiet_hours(prefs)
        if not quiet.get("enabled"):
            return False

        tz = resolve_timezone(quiet["timezone"])
        local_now = _as_utc(now).astimezone(tz)
        t = local_now.hour * 60 + local_now.minute

        start_time = parse_hhmm(quiet["start_time"], field="quiet_hours.start_time")
        end_time = parse_hhmm(quiet["end_time"], field="quiet_hours.end_time")
        start = start_time.hour * 60 + start_time.minute
        end = end_time.hour * 60 + end_time.minute

        if start < end:
            return start <= t <= end
        return t >= start or t <= end

    def next_quiet_hours_end(self, prefs: NotificationPreferences, now: Optional[datetime] = None) -> datetime:
        """
        Next occurrence of the quiet-hours end time, as naive UTC.

        Computed in the recipient's timezone; rolls to the next calendar
        day when today's end time has already passed.
        """
        quiet = self._quiet_hours(prefs)
        tz = resolve_timezone(quiet["timezone"])
        end_time = parse_hhmm(quiet["end_time"], field="quiet_hours.end_time")

        local_now = _as_utc(now).astimezone(tz)
        candidate = datetime.combine(local_now.date(), end_time, tzinfo=tz)
        # Inside the (inclusive) end minute today's end is already behind us
        if candidate <= local_now:
            candidate = datetime.combine(local_now.date() + timedelta(days=1), end_time, tzinfo=tz)

        return candidate.astimezone(timezone.utc).replace(tzinfo=None)

    def local_datetime(self, prefs: NotificationPreferences, now: Optional[datetime] = None) -> datetime:
        """``now`` in the recipient's timezone (the quiet-hours timezone)."""
        tz = resolve_timezone(self._quiet_hours(prefs)["timezone"])
        return _as_utc(now).astimezone(tz)

    def local_date(self, prefs: NotificationPreferences, now: Optional[datetime] = None) -> date:
        """Calendar date in the recipient's timezone."""
        return self.local_datetime(prefs, now).date()
