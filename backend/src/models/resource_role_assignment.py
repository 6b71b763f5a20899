"""
Resource role assignment model linking a resource to a role it can fill.
"""

from datetime import datetime
from sqlalchemy import ForeignKey, TIMESTAMP, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class ResourceRoleAssignment(Base):
    """
    Assignment of a resource to a role.

    Lower priority values are preferred by the slot generator when several
    resources can fill the same role.
    """

    __tablename__ = "resource_role_assignments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the assignment."""

    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), index=True)
    """Resource filling the role."""

    role_id: Mapped[int] = mapped_column(ForeignKey("resource_roles.id", ondelete="CASCADE"), index=True)
    """Role being filled."""

    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Selection priority (lower is preferred)."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the assignment was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the assignment was last updated."""

    # Relationships
    resource = relationship("Resource", back_populates="role_assignments")
    """Resource filling the role."""

    role = relationship("ResourceRole", back_populates="assignments")
    """Role being filled."""

    __table_args__ = (
        UniqueConstraint('resource_id', 'role_id', name='uq_resource_role_assignment'),
    )
