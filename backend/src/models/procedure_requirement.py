"""
Procedure requirement model tying a role to a procedure.

A requirement may cover only part of the procedure: offsets are minutes from
the start of the procedure's span (buffers included). A NULL end offset means
the role is held until the procedure ends.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import ForeignKey, TIMESTAMP, Boolean, Integer, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class ProcedureRequirement(Base):
    """
    Requirement of a role by a procedure.

    Examples: 1 surgeon for the whole procedure; 1 assistant from minute 5
    to minute 20; 2 units of a consumable.
    """

    __tablename__ = "procedure_requirements"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the requirement."""

    procedure_id: Mapped[int] = mapped_column(ForeignKey("procedures.id", ondelete="CASCADE"), index=True)
    """Procedure declaring the requirement."""

    role_id: Mapped[int] = mapped_column(ForeignKey("resource_roles.id", ondelete="RESTRICT"), index=True)
    """Role that must be filled."""

    quantity_min: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    """
    Number of resources needed to fill the role.

    For consumable roles this is the number of units drawn from one stock resource.
    """

    quantity_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Upper bound on resources assigned. NULL means the same as quantity_min."""

    is_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Optional requirements are filled best-effort and never block a slot."""

    offset_start_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Minutes from procedure start when the role is first needed."""

    offset_end_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Minutes from procedure start when the role is released. NULL means end of procedure."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Free-text notes for staff."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the requirement was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the requirement was last updated."""

    # Relationships
    procedure = relationship("Procedure", back_populates="requirements")
    """Procedure declaring the requirement."""

    role = relationship("ResourceRole")
    """Role that must be filled."""

    __table_args__ = (
        CheckConstraint('quantity_min >= 0', name='ck_procedure_requirement_quantity_min'),
        CheckConstraint('offset_start_minutes >= 0', name='ck_procedure_requirement_offset_start'),
    )
