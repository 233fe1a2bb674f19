"""
Pydantic schemas for notification API request/response validation.

Provides data validation and serialization for:
- Notification history (list, detail, unread count, stats)
- Notification preferences (get, update) and channel targets
- Send, broadcast and dispatch operations
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from crewnotify.src.models.notification import NotificationPriority, RelatedEntityKind


HHMM_REGEX = r"^([01]\d|2[0-3]):([0-5]\d)$"


def _to_naive_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


# ============================================================================
# Notification Schemas
# ============================================================================


class RelatedEntity(BaseModel):
    """Pointer to the business entity a notification is about."""

    kind: RelatedEntityKind
    id: str = Field(..., min_length=1, max_length=100)


class NotificationResponse(BaseModel):
    """Response schema for a single notification."""

    guid: str = Field(..., description="Notification GUID (ntf_xxx)")
    title: str
    message: str
    type: str
    priority: str
    status: str
    related_entity_kind: Optional[str] = None
    related_entity_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    delivery_attempts: int = 0
    scheduled_for: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime

    @field_serializer("scheduled_for", "sent_at", "read_at", "expires_at", "created_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    """Response schema for a paginated notification list."""

    items: List[NotificationResponse]
    total: int = Field(..., ge=0, description="Total notifications matching filter")
    page: int
    limit: int
    unread_count: int = Field(..., ge=0)


class UnreadCountResponse(BaseModel):
    """Response schema for unread notification count."""

    unread_count: int = Field(..., ge=0, description="Number of unread notifications")


class MarkAllReadResponse(BaseModel):
    """Response schema for mark-all-as-read."""

    updated_count: int = Field(..., ge=0, description="Notifications marked as read")


class NotificationStatsEntry(BaseModel):
    """Counts for one notification type."""

    type: str
    total: int = Field(..., ge=0)
    statuses: Dict[str, int]


class NotificationStatsResponse(BaseModel):
    """Response schema for type x status statistics."""

    stats: List[NotificationStatsEntry]


# ============================================================================
# Notification Preferences Schemas
# ============================================================================


class QuietHours(BaseModel):
    enabled: bool = False
    start_time: str = Field("22:00", pattern=HHMM_REGEX)
    end_time: str = Field("08:00", pattern=HHMM_REGEX)
    timezone: str = Field("UTC", description="IANA timezone identifier")


class DeadlineReminderSettings(BaseModel):
    enabled: bool = True
    hours_before: int = Field(24, ge=1, le=168)
    repeat: bool = False


class TaskReminderSettings(BaseModel):
    enabled: bool = True
    inactive_hours: int = Field(2, ge=1, le=72)


class DailySummarySettings(BaseModel):
    enabled: bool = False
    time: str = Field("18:00", pattern=HHMM_REGEX)


class ReminderSettings(BaseModel):
    deadline_reminders: DeadlineReminderSettings = Field(default_factory=DeadlineReminderSettings)
    task_reminders: TaskReminderSettings = Field(default_factory=TaskReminderSettings)
    daily_summary: DailySummarySettings = Field(default_factory=DailySummarySettings)


class NotificationPreferencesResponse(BaseModel):
    """Response schema for notification preferences."""

    push_enabled: bool = True
    email_enabled: bool = False
    notification_types: Dict[str, bool]
    quiet_hours: QuietHours
    reminder_settings: ReminderSettings
    push_token: Optional[str] = None
    web_push_subscribed: bool = False
    last_updated: Optional[datetime] = None

    @field_serializer("last_updated")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None


class QuietHoursUpdate(BaseModel):
    enabled: Optional[bool] = None
    start_time: Optional[str] = Field(default=None, pattern=HHMM_REGEX)
    end_time: Optional[str] = Field(default=None, pattern=HHMM_REGEX)
    timezone: Optional[str] = None


class DeadlineReminderUpdate(BaseModel):
    enabled: Optional[bool] = None
    hours_before: Optional[int] = Field(default=None, ge=1, le=168)
    repeat: Optional[bool] = None


class TaskReminderUpdate(BaseModel):
    enabled: Optional[bool] = None
    inactive_hours: Optional[int] = Field(default=None, ge=1, le=72)


class DailySummaryUpdate(BaseModel):
    enabled: Optional[bool] = None
    time: Optional[str] = Field(default=None, pattern=HHMM_REGEX)


class ReminderSettingsUpdate(BaseModel):
    deadline_reminders: Optional[DeadlineReminderUpdate] = None
    task_reminders: Optional[TaskReminderUpdate] = None
    daily_summary: Optional[DailySummaryUpdate] = None


class NotificationPreferencesUpdate(BaseModel):
    """
    Schema for updating notification preferences.

    All fields are optional; only provided fields are updated, and nested
    sections are merged key by key.
    """

    push_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    notification_types: Optional[Dict[str, bool]] = None
    quiet_hours: Optional[QuietHoursUpdate] = None
    reminder_settings: Optional[ReminderSettingsUpdate] = None


class PushTokenUpdate(BaseModel):
    """Register (or clear, with null) the mobile push token."""

    push_token: Optional[str] = Field(default=None, max_length=255)


class WebPushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class WebPushSubscription(BaseModel):
    """Browser PushSubscription JSON."""

    endpoint: str = Field(..., description="Push service endpoint URL (must be HTTPS)")
    keys: WebPushKeys

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint_https(cls, v: str) -> str:
        """Ensure endpoint uses HTTPS."""
        if not v.startswith("https://"):
            raise ValueError("Push subscription endpoint must use HTTPS")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "endpoint": "https://fcm.googleapis.com/fcm/send/abc123...",
                "keys": {
                    "p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0...",
                    "auth": "tBHItJI5svbpC7htUH8g...",
                },
            }
        }
    }


class WebPushSubscriptionUpdate(BaseModel):
    """Register (or clear, with null) the web push subscription."""

    subscription: Optional[WebPushSubscription] = None


# ============================================================================
# Send / Broadcast / Dispatch Schemas
# ============================================================================


class SendNotificationRequest(BaseModel):
    """
    Schema for sending a notification to one recipient.

    Required:
        recipient_id: The recipient's external (employee) id
        title, message, type

    Optional:
        priority: low | medium | high | urgent (default medium)
        related_entity, data, expires_at
    """

    recipient_id: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    type: str = Field(..., min_length=1, max_length=50)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    related_entity: Optional[RelatedEntity] = None
    data: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store timestamps as naive UTC."""
        return _to_naive_utc(v)


class SendNotificationResponse(BaseModel):
    """Result of a send; notification is null when suppressed."""

    sent: bool
    message: str
    notification: Optional[NotificationResponse] = None


class BroadcastRequest(BaseModel):
    """
    Schema for broadcasting a notification.

    recipient_ids (external ids) restricts the audience; omitted means
    every active recipient.
    """

    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    type: str = Field(..., min_length=1, max_length=50)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    data: Optional[Dict[str, Any]] = None
    recipient_ids: Optional[List[str]] = Field(default=None, max_length=1000)


class BroadcastResponse(BaseModel):
    total: int = Field(..., ge=0)
    sent: int = Field(..., ge=0)
    suppressed: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)


class DispatchResponse(BaseModel):
    selected: int = Field(..., ge=0)
    delivered: int = Field(..., ge=0)
    pending: int = Field(..., ge=0)
    abandoned: int = Field(..., ge=0)
