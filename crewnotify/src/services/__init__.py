"""
Service layer for the notification engine.

This module exports the service classes used by the API and by business
callers.
"""

from crewnotify.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    RecipientNotFoundError,
    ValidationError,
    UnknownNotificationTypeError,
    PersistenceError,
    InvalidTransitionError,
    ChannelError,
    ChannelTransportError,
    ChannelTargetInvalidError,
)
from crewnotify.src.services.notification_types import (
    NotificationType,
    NotificationTypeRegistry,
    get_type_registry,
)
from crewnotify.src.services.delivery_router import DeliveryRouter, RetryPolicy, build_default_router
from crewnotify.src.services.notification_store import NotificationStore
from crewnotify.src.services.preference_service import PreferenceService
from crewnotify.src.services.dedup_guard import DedupGuard
from crewnotify.src.services.notification_service import PreferenceEngine, BroadcastResult
from crewnotify.src.services.scheduled_dispatcher import ScheduledDispatcher, DispatchSummary
from crewnotify.src.services.trigger_service import TriggerService
from crewnotify.src.services.timer_service import TimerService, build_timer_service

__all__ = [
    "ServiceError",
    "NotFoundError",
    "RecipientNotFoundError",
    "ValidationError",
    "UnknownNotificationTypeError",
    "PersistenceError",
    "InvalidTransitionError",
    "ChannelError",
    "ChannelTransportError",
    "ChannelTargetInvalidError",
    "NotificationType",
    "NotificationTypeRegistry",
    "get_type_registry",
    "DeliveryRouter",
    "RetryPolicy",
    "build_default_router",
    "NotificationStore",
    "PreferenceService",
    "DedupGuard",
    "PreferenceEngine",
    "BroadcastResult",
    "ScheduledDispatcher",
    "DispatchSummary",
    "TriggerService",
    "TimerService",
    "build_timer_service",
]
