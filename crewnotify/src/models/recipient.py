"""
Recipient model.

The minimal identity the engine needs: a stable id mapped to the caller's
own employee record. Business attributes of that employee live elsewhere.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from crewnotify.src.models import Base
from crewnotify.src.models.mixins import GuidMixin


class Recipient(Base, GuidMixin):
    """
    Someone who can receive notifications.

    Attributes:
        external_id: Id of the employee record in the calling system (unique)
        name: Display name
        email: Optional contact address (stored, not used for delivery)
        is_active: Inactive recipients are skipped by broadcasts and sweeps
    """

    __tablename__ = "recipients"
    GUID_PREFIX = "rcp"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    notifications = relationship(
        "Notification",
        foreign_keys="Notification.recipient_id",
        back_populates="recipient",
        cascade="all, delete-orphan",
    )
    preferences = relationship(
        "NotificationPreferences",
        back_populates="recipient",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Recipient(id={self.id}, external_id='{self.external_id}')>"
