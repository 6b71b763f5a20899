"""
Resource type model representing the top level of the resource taxonomy.

Every resource belongs to exactly one type. The built-in codes are
"people", "place", "equipment" and "consumable"; clinics may add their own.
"""

from datetime import datetime
from sqlalchemy import String, TIMESTAMP, Boolean, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class ResourceType(Base):
    """
    Resource type entity (e.g. people, place, equipment, consumable).

    Resource types are clinic-specific and have a unique code within each clinic.
    """

    __tablename__ = "resource_types"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the resource type."""

    clinic_id: Mapped[int] = mapped_column(Integer, index=True)
    """Clinic that owns this resource type."""

    code: Mapped[str] = mapped_column(String(50))
    """Machine-readable code (e.g. "people", "place"). Unique within the clinic."""

    name: Mapped[str] = mapped_column(String(255))
    """Display name of the resource type."""

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Display ordering in catalog listings."""

    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    """True for built-in types that cannot be renamed by clinic admins."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive types are hidden from catalog listings."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the resource type was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the resource type was last updated."""

    # Relationships
    subtypes = relationship("ResourceSubtype", back_populates="resource_type", cascade="all, delete-orphan")
    """Subtypes refining this type (e.g. "treatment_room" under "place")."""

    resources = relationship("Resource", back_populates="resource_type")
    """All Resource instances of this type."""

    __table_args__ = (
        UniqueConstraint('clinic_id', 'code', name='uq_resource_type_clinic_code'),
    )
