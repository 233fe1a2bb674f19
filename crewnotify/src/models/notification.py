"""
Notification model: one persisted, per-recipient delivery unit.

A record is written before any channel is tried, so a notification is
never lost when every channel fails. Status only moves forward through
the lifecycle enforced by NotificationStore.transition:

    pending -> sent | delivered
    sent -> delivered
    pending | sent | delivered -> read
    any non-archived state -> archived
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB

from crewnotify.src.models import Base
from crewnotify.src.models.mixins import GuidMixin


class NotificationStatus(str, enum.Enum):
    """Lifecycle states of a notification."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    ARCHIVED = "archived"


class NotificationPriority(str, enum.Enum):
    """Delivery priority. Only URGENT bypasses quiet hours."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RelatedEntityKind(str, enum.Enum):
    """Kinds of business entity a notification can point at."""
    TASK = "task"
    TIME_ENTRY = "time_entry"
    PROJECT = "project"
    EMPLOYEE = "employee"
    MATERIAL = "material"
    CONTRACT = "contract"
    TODO = "todo"
    SYSTEM = "system"


class Notification(Base, GuidMixin):
    """
    Notification sent (or to be sent) to one recipient.

    Attributes:
        type: Registered notification type key (task_assigned, low_stock, ...)
        priority: low | medium | high | urgent
        status: pending | sent | delivered | read | archived
        related_entity_kind / related_entity_id: Optional correlation pointer
        data: Free-form JSON payload, also holds dedup correlation keys
        push_token / web_push_subscription: Channel targets resolved at send time
        push_response / web_push_response: Per-channel acknowledgment
        scheduled_for: Deferred, not yet attempted (quiet hours)
        delivery_attempts / last_attempt_at / next_attempt_at: Retry bookkeeping;
            next_attempt_at is cleared once a record is delivered or abandoned
        expires_at: Past-expiry records are hidden from active listings
    """

    __tablename__ = "notifications"
    GUID_PREFIX = "ntf"

    id = Column(Integer, primary_key=True, autoincrement=True)

    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("recipients.id"), nullable=True)

    # Content
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    type = Column(String(50), nullable=False, index=True)
    priority = Column(String(10), nullable=False, default=NotificationPriority.MEDIUM.value)
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value, index=True)

    related_entity_kind = Column(String(20), nullable=True)
    related_entity_id = Column(String(100), nullable=True)

    data = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=True)

    # Channel targets and responses
    push_token = Column(String(255), nullable=True)
    web_push_subscription = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=True)
    push_response = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=True)
    web_push_response = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=True)

    # Scheduling and retry
    scheduled_for = Column(DateTime, nullable=True, index=True)
    delivery_attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True, index=True)

    sent_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    recipient = relationship("Recipient", foreign_keys=[recipient_id], back_populates="notifications")
    sender = relationship("Recipient", foreign_keys=[sender_id])

    __table_args__ = (
        Index("ix_notifications_recipient_status", "recipient_id", "status"),
        Index("ix_notifications_due", "status", "scheduled_for"),
        Index("ix_notifications_retry", "status", "next_attempt_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, type='{self.type}', "
            f"status='{self.status}', recipient_id={self.recipient_id})>"
        )
