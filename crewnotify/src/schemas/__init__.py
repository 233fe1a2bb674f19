"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from crewnotify.src.schemas.notifications import (
    RelatedEntity,
    NotificationResponse,
    NotificationListResponse,
    UnreadCountResponse,
    MarkAllReadResponse,
    NotificationStatsEntry,
    NotificationStatsResponse,
    QuietHours,
    ReminderSettings,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    PushTokenUpdate,
    WebPushSubscription,
    WebPushSubscriptionUpdate,
    SendNotificationRequest,
    SendNotificationResponse,
    BroadcastRequest,
    BroadcastResponse,
    DispatchResponse,
)

__all__ = [
    "RelatedEntity",
    "NotificationResponse",
    "NotificationListResponse",
    "UnreadCountResponse",
    "MarkAllReadResponse",
    "NotificationStatsEntry",
    "NotificationStatsResponse",
    "QuietHours",
    "ReminderSettings",
    "NotificationPreferencesResponse",
    "NotificationPreferencesUpdate",
    "PushTokenUpdate",
    "WebPushSubscription",
    "WebPushSubscriptionUpdate",
    "SendNotificationRequest",
    "SendNotificationResponse",
    "BroadcastRequest",
    "BroadcastResponse",
    "DispatchResponse",
]
