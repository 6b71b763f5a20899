"""
Resource role model representing a capability a procedure can require.

Examples: "surgeon", "assistant", "procedure_room", "laser_device".
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Text, Boolean, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class ResourceRole(Base):
    """
    Resource role entity.

    A role may be restricted to resources of one type (e.g. "surgeon" can only
    be filled by people). Resources fill roles through ResourceRoleAssignment.
    """

    __tablename__ = "resource_roles"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the role."""

    clinic_id: Mapped[int] = mapped_column(Integer, index=True)
    """Clinic that owns this role."""

    code: Mapped[str] = mapped_column(String(50))
    """Machine-readable code, unique within the clinic."""

    name: Mapped[str] = mapped_column(String(255))
    """Display name of the role."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Optional description."""

    resource_type_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("resource_types.id", ondelete="SET NULL"), nullable=True
    )
    """Resource type allowed to fill this role. NULL allows any type."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive roles cannot be assigned or required."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the role was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the role was last updated."""

    # Relationships
    resource_type = relationship("ResourceType")
    """ResourceType allowed to fill this role."""

    assignments = relationship("ResourceRoleAssignment", back_populates="role", cascade="all, delete-orphan")
    """Resources assigned to this role."""

    __table_args__ = (
        UniqueConstraint('clinic_id', 'code', name='uq_resource_role_clinic_code'),
    )
