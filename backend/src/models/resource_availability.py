"""
Resource availability model representing available or blocked windows.

A record covers [start_time, end_time) once, or repeatedly when it carries a
recurrence pattern. Recurring records repeat the window's time of day and
length on every occurrence date. Blocked windows always win over available
windows for overlapping instants.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, DateTime, Integer, Text, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from models.base import JSONType


class ResourceAvailability(Base):
    """
    Availability window for a resource.

    The window may override the resource's reservation mode and capacity
    (e.g. a room that is shared only during a group session block).
    """

    __tablename__ = "resource_availability"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the availability record."""

    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), index=True)
    """Resource this window applies to."""

    clinic_id: Mapped[int] = mapped_column(Integer, index=True)
    """Clinic that owns the resource."""

    start_time: Mapped[datetime] = mapped_column(DateTime)
    """Start of the (first) window, clinic local time."""

    end_time: Mapped[datetime] = mapped_column(DateTime)
    """Exclusive end of the (first) window, clinic local time."""

    availability_type: Mapped[str] = mapped_column(String(20), default="available", nullable=False)
    """'available' or 'blocked'."""

    recurrence_pattern: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    """
    Recurrence rule serialized from shared_types.recurrence.RecurrencePattern.

    NULL for one-off windows. Example:
    {"type": "weekly", "interval": 1, "days_of_week": ["monday", "wednesday"],
     "range": {"range_type": "end_date", "end_date": "2026-12-31"}}
    """

    reservation_mode_override: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Reservation mode used inside this window instead of the resource default."""

    max_concurrent_override: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Capacity used inside this window instead of the resource default."""

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Free-text reason, mostly for blocked windows (vacation, maintenance)."""

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Staff user who created the window."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the record was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the record was last updated."""

    # Relationships
    resource = relationship("Resource", back_populates="availability_windows")
    """Resource this window applies to."""

    __table_args__ = (
        CheckConstraint('end_time > start_time', name='ck_resource_availability_window'),
        CheckConstraint("availability_type IN ('available', 'blocked')", name='ck_resource_availability_type'),
        Index('idx_resource_availability_resource_start', 'resource_id', 'start_time'),
    )

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_pattern is not None
