"""
Appointment resource model representing an actual reservation.

Each row holds one resource in one role for [reserved_start, reserved_end).
Rows are never deleted when an appointment is cancelled; they are marked
released and excluded from capacity checks by status.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, DateTime, Integer, Text, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class AppointmentResource(Base):
    """
    Reservation of a resource by an appointment.

    Status values:
    - assigned: held (default)
    - confirmed: acknowledged by the resource owner
    - declined: refused by the resource owner, no longer held
    - needs_coverage: held but flagged for replacement
    - released: freed by cancellation, no-show or reassignment
    """

    __tablename__ = "appointment_resources"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the reservation."""

    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id", ondelete="CASCADE"), index=True)
    """Appointment holding the reservation."""

    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="RESTRICT"), index=True)
    """Reserved resource."""

    role_id: Mapped[int] = mapped_column(ForeignKey("resource_roles.id", ondelete="RESTRICT"))
    """Role the resource fills in this appointment."""

    reserved_start: Mapped[datetime] = mapped_column(DateTime)
    """Start of the reservation, clinic local time."""

    reserved_end: Mapped[datetime] = mapped_column(DateTime)
    """Exclusive end of the reservation, clinic local time."""

    reservation_mode: Mapped[str] = mapped_column(String(20), default="exclusive", nullable=False)
    """Effective reservation mode at booking time: 'exclusive' or 'shared'."""

    status: Mapped[str] = mapped_column(String(20), default="assigned", nullable=False)
    """'assigned', 'confirmed', 'declined', 'needs_coverage' or 'released'."""

    quantity_consumed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Units drawn from stock (consumables only)."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Staff notes."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the reservation was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the reservation was last updated."""

    # Relationships
    appointment = relationship("Appointment", back_populates="resources")
    """Appointment holding the reservation."""

    resource = relationship("Resource", back_populates="reservations")
    """Reserved resource."""

    role = relationship("ResourceRole")
    """Role filled by the resource."""

    __table_args__ = (
        CheckConstraint('reserved_end > reserved_start', name='ck_appointment_resource_window'),
        CheckConstraint('quantity_consumed IS NULL OR quantity_consumed >= 0', name='ck_appointment_resource_quantity'),
        CheckConstraint(
            "status IN ('assigned', 'confirmed', 'declined', 'needs_coverage', 'released')",
            name='ck_appointment_resource_status'
        ),
        Index('idx_appointment_resources_resource_window', 'resource_id', 'reserved_start', 'reserved_end'),
    )
