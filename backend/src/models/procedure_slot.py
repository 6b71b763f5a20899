"""
Procedure slot model representing a time window for one procedure instance.

Slots are either persisted ahead of time by staff ("manual" generation) or
created on demand when an ephemeral candidate is booked ("auto" generation).
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, DateTime, Integer, Text, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class ProcedureSlot(Base):
    """
    Slot entity.

    Status values:
    - available: bookable
    - booked: held by an active appointment
    - cancelled: withdrawn by staff
    - blocked: not bookable (e.g. reserved for walk-ins)
    """

    __tablename__ = "procedure_slots"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the slot."""

    clinic_id: Mapped[int] = mapped_column(Integer, index=True)
    """Clinic that owns the slot."""

    procedure_id: Mapped[int] = mapped_column(ForeignKey("procedures.id", ondelete="CASCADE"), index=True)
    """Procedure performed in this slot."""

    start_time: Mapped[datetime] = mapped_column(DateTime)
    """Start of the slot (procedure span start, buffers included), clinic local time."""

    end_time: Mapped[datetime] = mapped_column(DateTime)
    """Exclusive end of the slot, clinic local time."""

    status: Mapped[str] = mapped_column(String(20), default="available", nullable=False)
    """'available', 'booked', 'cancelled' or 'blocked'."""

    generation_type: Mapped[str] = mapped_column(String(20), default="manual", nullable=False)
    """'manual' when persisted ahead of booking, 'auto' when created at booking time."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Staff notes."""

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Staff user who created the slot."""

    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """Set when the appointment in this slot is completed."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the slot was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the slot was last updated."""

    # Relationships
    procedure = relationship("Procedure", back_populates="slots")
    """Procedure performed in this slot."""

    appointments = relationship("Appointment", back_populates="slot")
    """Appointments booked into this slot (at most one active)."""

    __table_args__ = (
        CheckConstraint('end_time > start_time', name='ck_procedure_slot_window'),
        CheckConstraint("status IN ('available', 'booked', 'cancelled', 'blocked')", name='ck_procedure_slot_status'),
        Index('idx_procedure_slots_procedure_start', 'procedure_id', 'start_time'),
        Index('idx_procedure_slots_clinic_status_start', 'clinic_id', 'status', 'start_time'),
    )
