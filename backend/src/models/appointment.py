"""
Appointment model representing a booking of a contact into a procedure slot.

Lifecycle: scheduled -> confirmed -> checked_in -> in_progress -> completed.
Any non-terminal state may move to cancelled or no_show.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, Text, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class Appointment(Base):
    """
    Appointment entity.

    The timing lives on the slot; the resources held live on
    AppointmentResource rows. Cancelled and no-show appointments keep their
    reservation rows as history.
    """

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the appointment."""

    clinic_id: Mapped[int] = mapped_column(Integer, index=True)
    """Clinic that owns the appointment."""

    slot_id: Mapped[int] = mapped_column(ForeignKey("procedure_slots.id", ondelete="RESTRICT"), index=True)
    """Slot this appointment is booked into."""

    contact_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    """External contact identity (owned by the CRM)."""

    status: Mapped[str] = mapped_column(String(20), default="scheduled", nullable=False)
    """
    Current status. Valid values: 'scheduled', 'confirmed', 'checked_in',
    'in_progress', 'completed', 'cancelled', 'no_show'.
    """

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Booking notes."""

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Staff user who booked the appointment (NULL for self-booking)."""

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """Timestamp when the appointment was cancelled."""

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Reason given on cancellation."""

    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """Timestamp when the appointment was completed."""

    rescheduled_from_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    """Appointment this one replaced when rescheduled."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the appointment was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the appointment was last updated."""

    # Relationships
    slot = relationship("ProcedureSlot", back_populates="appointments")
    """Slot this appointment is booked into."""

    resources = relationship(
        "AppointmentResource",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentResource.id",
    )
    """Reservations held by this appointment."""

    preferences = relationship(
        "AppointmentPreference",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentPreference.priority",
    )
    """Resource preferences expressed at booking time."""

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'checked_in', 'in_progress', 'completed', 'cancelled', 'no_show')",
            name='ck_appointment_status'
        ),
        Index('idx_appointments_clinic_status', 'clinic_id', 'status'),
    )
