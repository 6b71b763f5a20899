"""
Procedure model representing a clinical service definition.

Atomic procedures have a fixed duration. Composite procedures are built from
ordered child procedures (ProcedureComposition) and derive their duration
from them. Both may add buffer time before and after.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import String, TIMESTAMP, Text, Boolean, Integer, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from models.base import JSONType


class Procedure(Base):
    """
    Procedure entity.

    Examples: "consultation" (atomic, 30 min), "full_assessment" (composite of
    consultation followed by a scan).
    """

    __tablename__ = "procedures"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the procedure."""

    clinic_id: Mapped[int] = mapped_column(Integer, index=True)
    """Clinic that owns this procedure."""

    code: Mapped[str] = mapped_column(String(50))
    """Machine-readable code, unique within the clinic."""

    name: Mapped[str] = mapped_column(String(255))
    """Display name of the procedure."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Optional description."""

    procedure_type: Mapped[str] = mapped_column(String(20), default="atomic", nullable=False)
    """'atomic' or 'composite'. Cannot change after creation."""

    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Core duration of an atomic procedure. NULL for composite procedures."""

    buffer_before_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Preparation time reserved before the procedure."""

    buffer_after_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Cleanup time reserved after the procedure."""

    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Calendar color (hex)."""

    procedure_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)
    """Display-only settings (e.g. patient instructions). Not read by the scheduler."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive procedures cannot be scheduled."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the procedure was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the procedure was last updated."""

    # Relationships
    requirements = relationship(
        "ProcedureRequirement",
        back_populates="procedure",
        cascade="all, delete-orphan",
        order_by="ProcedureRequirement.id",
    )
    """Role requirements of this procedure."""

    children = relationship(
        "ProcedureComposition",
        foreign_keys="ProcedureComposition.parent_procedure_id",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="ProcedureComposition.sequence_order",
    )
    """Ordered child links (composite procedures only)."""

    slots = relationship("ProcedureSlot", back_populates="procedure")
    """Slots generated or booked for this procedure."""

    __table_args__ = (
        UniqueConstraint('clinic_id', 'code', name='uq_procedure_clinic_code'),
        CheckConstraint("procedure_type IN ('atomic', 'composite')", name='ck_procedure_type'),
        CheckConstraint('duration_minutes IS NULL OR duration_minutes > 0', name='ck_procedure_duration_positive'),
        CheckConstraint('buffer_before_minutes >= 0 AND buffer_after_minutes >= 0', name='ck_procedure_buffers'),
    )

    @property
    def is_composite(self) -> bool:
        return self.procedure_type == "composite"
