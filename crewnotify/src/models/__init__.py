"""
SQLAlchemy models for the Crew Notify service.

Provides the declarative base class and imports all models so they are
registered with SQLAlchemy's metadata (required for Alembic autogenerate).
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()


from crewnotify.src.models.recipient import Recipient
from crewnotify.src.models.notification import (
    Notification,
    NotificationStatus,
    NotificationPriority,
    RelatedEntityKind,
)
from crewnotify.src.models.notification_preferences import NotificationPreferences
from crewnotify.src.models.threshold_state import ThresholdState

__all__ = [
    "Base",
    "Recipient",
    "Notification",
    "NotificationStatus",
    "NotificationPriority",
    "RelatedEntityKind",
    "NotificationPreferences",
    "ThresholdState",
]
