"""
Procedure composition model ordering child procedures inside a composite.
"""

from datetime import datetime
from sqlalchemy import ForeignKey, TIMESTAMP, Integer, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class ProcedureComposition(Base):
    """
    Link from a composite procedure to one of its children.

    Children run in sequence_order. gap_after_minutes is idle time after the
    child before the next one starts.
    """

    __tablename__ = "procedure_compositions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the link."""

    parent_procedure_id: Mapped[int] = mapped_column(ForeignKey("procedures.id", ondelete="CASCADE"), index=True)
    """Composite procedure."""

    child_procedure_id: Mapped[int] = mapped_column(ForeignKey("procedures.id", ondelete="RESTRICT"), index=True)
    """Child procedure (atomic or composite)."""

    sequence_order: Mapped[int] = mapped_column(Integer)
    """Position of the child within the parent. Unique per parent."""

    gap_after_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Gap after this child before the next child starts."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the link was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the link was last updated."""

    # Relationships
    parent = relationship("Procedure", foreign_keys=[parent_procedure_id], back_populates="children")
    """Composite procedure."""

    child = relationship("Procedure", foreign_keys=[child_procedure_id])
    """Child procedure."""

    __table_args__ = (
        UniqueConstraint('parent_procedure_id', 'sequence_order', name='uq_procedure_composition_order'),
        CheckConstraint('parent_procedure_id <> child_procedure_id', name='ck_procedure_composition_not_self'),
        CheckConstraint('gap_after_minutes >= 0', name='ck_procedure_composition_gap'),
    )
