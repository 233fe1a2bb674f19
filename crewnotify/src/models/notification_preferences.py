"""
NotificationPreferences model: exactly one row per recipient.

Created lazily with engine defaults the first time a recipient's
preferences are read or written (see PreferenceService.get_or_create).
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB

from crewnotify.src.models import Base


class NotificationPreferences(Base):
    """
    Per-recipient delivery preferences.

    Attributes:
        push_enabled: Master switch for all push delivery
        email_enabled: Stored for clients, never consulted for delivery
        notification_types: {type_key: bool} toggles
        quiet_hours: {enabled, start_time "HH:MM", end_time "HH:MM", timezone}
        reminder_settings: {deadline_reminders, task_reminders, daily_summary}
        push_token: Mobile push token for this recipient
        web_push_subscription: {endpoint, keys: {p256dh, auth}}
    """

    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(
        Integer,
        ForeignKey("recipients.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    push_enabled = Column(Boolean, nullable=False, default=True)
    email_enabled = Column(Boolean, nullable=False, default=False)

    notification_types = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=dict)
    quiet_hours = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=dict)
    reminder_settings = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=dict)

    push_token = Column(String(255), nullable=True)
    web_push_subscription = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=True)

    last_updated = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    recipient = relationship("Recipient", back_populates="preferences")

    def __repr__(self) -> str:
        return (
            f"<NotificationPreferences(recipient_id={self.recipient_id}, "
            f"push_enabled={self.push_enabled})>"
        )
