"""
Resource model representing a bookable unit.

A resource is a person, place, piece of equipment or consumable stock that
can fill roles required by procedures. Appointments reference resources
through AppointmentResource reservations but never own them.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Text, Boolean, Integer, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from models.base import JSONType


class Resource(Base):
    """
    Resource entity representing an individual bookable unit.

    Examples: "Dr. Chen" (people), "Procedure Room 1" (place),
    "CO2 Laser" (equipment), "Botox 100U vial" (consumable).

    Reservation modes:
    - exclusive: at most one active reservation at any instant
    - shared: up to max_concurrent_bookings overlapping reservations

    Consumables are booked by stock only: each reservation decrements
    quantity_on_hand and time overlap is not checked.
    """

    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the resource."""

    clinic_id: Mapped[int] = mapped_column(Integer, index=True)
    """Clinic that owns this resource."""

    resource_type_id: Mapped[int] = mapped_column(ForeignKey("resource_types.id", ondelete="RESTRICT"), index=True)
    """Resource type this resource belongs to."""

    resource_subtype_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("resource_subtypes.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    """Subtype within the resource type. Must belong to resource_type_id."""

    name: Mapped[str] = mapped_column(String(255))
    """Name of the resource. Unique within the clinic."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Optional description of the resource."""

    reservation_mode: Mapped[str] = mapped_column(String(20), default="exclusive", nullable=False)
    """Default reservation mode: 'exclusive' or 'shared'. Availability windows may override it."""

    max_concurrent_bookings: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    """Default capacity for shared reservations. Always 1 for exclusive resources."""

    parent_resource_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("resources.id", ondelete="SET NULL"), nullable=True, index=True
    )
    """Containing resource (e.g. the room holding a supply cabinet). Never forms a cycle."""

    is_consumable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    """True for stock tracked by quantity rather than by time."""

    quantity_on_hand: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Units currently in stock (consumables only). Never negative."""

    quantity_threshold: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Low-stock threshold: stock at or below this value is reported as low."""

    staff_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    """Staff identity this resource represents (people resources, owned elsewhere)."""

    resource_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)
    """Subtype-specific configuration, validated against the subtype's metadata schema."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Deactivated resources are never selected for new reservations."""

    reservation_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """
    Incremented by every reservation change touching this resource.

    The booking engine updates this row before reading existing reservations,
    which serializes concurrent bookings of the same resource on every backend.
    """

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the resource was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the resource was last updated."""

    # Relationships
    resource_type = relationship("ResourceType", back_populates="resources")
    """ResourceType this resource belongs to."""

    resource_subtype = relationship("ResourceSubtype", back_populates="resources")
    """ResourceSubtype this resource belongs to."""

    parent = relationship("Resource", remote_side="Resource.id", back_populates="children")
    """Containing resource, if any."""

    children = relationship("Resource", back_populates="parent")
    """Resources contained in this one."""

    role_assignments = relationship(
        "ResourceRoleAssignment",
        back_populates="resource",
        cascade="all, delete-orphan"
    )
    """Roles this resource can fill."""

    availability_windows = relationship(
        "ResourceAvailability",
        back_populates="resource",
        cascade="all, delete-orphan"
    )
    """Availability and blocked windows defined for this resource."""

    reservations = relationship("AppointmentResource", back_populates="resource")
    """Reservations held on this resource (historical rows included)."""

    __table_args__ = (
        UniqueConstraint('clinic_id', 'name', name='uq_resource_clinic_name'),
        CheckConstraint('quantity_on_hand IS NULL OR quantity_on_hand >= 0', name='ck_resource_quantity_non_negative'),
        CheckConstraint('max_concurrent_bookings >= 1', name='ck_resource_max_concurrent_positive'),
        CheckConstraint("reservation_mode IN ('exclusive', 'shared')", name='ck_resource_reservation_mode'),
    )

    @property
    def is_low_stock(self) -> bool:
        """True when a consumable's stock is at or below its threshold."""
        if not self.is_consumable or self.quantity_on_hand is None or self.quantity_threshold is None:
            return False
        return self.quantity_on_hand <= self.quantity_threshold
