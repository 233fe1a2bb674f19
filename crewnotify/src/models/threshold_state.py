"""
ThresholdState model: last observed level for an edge-triggered watch.

One row per watch key (e.g. "low_stock:material:42"). The dedup guard
compares each new observation with the stored one so that a level which
stays below its threshold notifies only once.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from crewnotify.src.models import Base


class ThresholdState(Base):
    """Last observed value of a monitored level."""

    __tablename__ = "threshold_states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    watch_key = Column(String(255), nullable=False, unique=True, index=True)
    last_value = Column(Float, nullable=False)
    is_below = Column(Boolean, nullable=False, default=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ThresholdState(watch_key='{self.watch_key}', last_value={self.last_value})>"
